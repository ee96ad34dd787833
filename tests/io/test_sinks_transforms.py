"""Tests for sinks, transforms and the transaction managers they bring."""

from __future__ import annotations

import sqlite3

import pytest

from batchspine.core.errors import ResourceError
from batchspine.execution.job import ChunkStep, Job
from batchspine.execution.launcher import JobLauncher
from batchspine.execution.models import BatchStatus
from batchspine.execution.parameters import JobParameters
from batchspine.execution.transaction import (
    NoopTransactionManager,
    RepositoryTransactionManager,
    SqliteTransactionManager,
)
from batchspine.io.sinks import CallableSink, ListSink, SqlSink
from batchspine.io.sources import IterableSource
from batchspine.io.transforms import (
    DROPPED,
    CompositeTransform,
    FunctionTransform,
    PassThrough,
    as_transform,
    is_dropped,
)
from batchspine.repository.memory import InMemoryJobRepository


class TestTransforms:
    def test_as_transform(self):
        assert isinstance(as_transform(None), PassThrough)
        wrapped = as_transform(str.upper)
        assert isinstance(wrapped, FunctionTransform)
        assert wrapped("abc") == "ABC"
        with pytest.raises(TypeError):
            as_transform(42)

    def test_composite_stops_at_drop(self):
        seen = []

        def record(item):
            seen.append(item)
            return item

        composite = CompositeTransform(lambda x: x * 2, lambda x: None if x > 4 else x, record)
        assert composite(2) == 4
        assert composite(3) is DROPPED
        assert seen == [4]

    def test_composite_retryable_only_if_all_are(self):
        assert CompositeTransform(str, str).retryable
        assert not CompositeTransform(str, FunctionTransform(str, retryable=False)).retryable

    def test_is_dropped(self):
        assert is_dropped(None)
        assert is_dropped(DROPPED)
        assert not is_dropped(0)
        assert not is_dropped("")


class TestSimpleSinks:
    def test_list_sink_keeps_batches(self):
        sink = ListSink()
        sink.write([1, 2])
        sink.write((3,))
        assert sink.items == [1, 2, 3]
        assert sink.batches == [[1, 2], [3]]
        assert isinstance(sink.default_transaction_manager(), NoopTransactionManager)

    def test_callable_sink(self):
        received = []
        CallableSink(received.append).write((1, 2))
        assert received == [[1, 2]]


class TestSqlSink:
    @pytest.fixture()
    def db_path(self, tmp_path):
        path = tmp_path / "target.db"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE people (name TEXT NOT NULL, age INTEGER)")
        conn.commit()
        conn.close()
        return path

    def _rows(self, path):
        conn = sqlite3.connect(path)
        try:
            return conn.execute("SELECT name, age FROM people ORDER BY rowid").fetchall()
        finally:
            conn.close()

    def test_named_placeholders(self, db_path):
        conn = sqlite3.connect(db_path, check_same_thread=False)
        sink = SqlSink(conn, "INSERT INTO people (name, age) VALUES (:name, :age)")
        manager = sink.default_transaction_manager()
        assert isinstance(manager, SqliteTransactionManager)
        with manager.transaction():
            sink.write([{"name": "Kim", "age": 31}, {"name": "Lee", "age": 42}])
        conn.close()
        assert self._rows(db_path) == [("Kim", 31), ("Lee", 42)]

    def test_failed_chunk_leaves_nothing(self, db_path):
        conn = sqlite3.connect(db_path, check_same_thread=False)
        sink = SqlSink(conn, "INSERT INTO people VALUES (?, ?)", mapper=lambda p: (p[0], p[1]))
        job = Job(
            "peopleJob",
            steps=[
                ChunkStep(
                    "peopleStep",
                    IterableSource([("Kim", 31), ("Lee", 42), (None, 50), ("Park", 27)]),
                    None,
                    sink,
                    chunk_size=2,
                )
            ],
        )
        execution = JobLauncher(InMemoryJobRepository()).run(job, JobParameters())
        conn.close()

        assert execution.status == BatchStatus.FAILED
        assert execution.failures[0]["error_type"] == "ChunkError"
        assert self._rows(db_path) == [("Kim", 31), ("Lee", 42)]

    def test_savepoint_rollback_keeps_outer_rows(self, db_path):
        conn = sqlite3.connect(db_path)
        manager = SqliteTransactionManager(conn)
        with manager.transaction():
            conn.execute("INSERT INTO people VALUES ('Kim', 31)")
            with pytest.raises(sqlite3.IntegrityError):
                with manager.transaction():
                    conn.execute("INSERT INTO people VALUES ('Lee', 42)")
                    conn.execute("INSERT INTO people VALUES (NULL, 1)")
        conn.close()
        assert self._rows(db_path) == [("Kim", 31)]

    def test_closed_connection_fails_open(self, db_path):
        conn = sqlite3.connect(db_path)
        conn.close()
        with pytest.raises(ResourceError):
            SqlSink(conn, "INSERT INTO people VALUES (?, ?)").open({})

    def test_for_repository_shares_repository_transaction(self, sqlite_repository):
        sink = SqlSink.for_repository(sqlite_repository, "INSERT INTO t VALUES (?)")
        manager = sink.default_transaction_manager()
        assert isinstance(manager, RepositoryTransactionManager)
        assert manager.shares_repository

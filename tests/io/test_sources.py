"""Tests for item sources — CSV, SQL query and iterable, including resume."""

from __future__ import annotations

import sqlite3

import pytest

from batchspine.core.errors import ResourceError
from batchspine.io.sources import END_OF_STREAM, CsvSource, IterableSource, SqlQuerySource


def _drain(source):
    items = []
    while (item := source.read()) is not END_OF_STREAM:
        items.append(item)
    return items


@pytest.fixture()
def users_csv(tmp_path):
    path = tmp_path / "users.csv"
    path.write_text(
        "name,email,age\n"
        "Kim, kim@example.com ,31\n"
        "\n"
        "Lee,lee@example.com,42\n"
        "Park,park@example.com,27\n",
        encoding="utf-8",
    )
    return path


class TestCsvSource:
    def test_reads_header_keyed_records(self, users_csv):
        source = CsvSource(users_csv)
        source.open({})
        records = _drain(source)
        source.close()

        assert [r["name"] for r in records] == ["Kim", "Lee", "Park"]
        assert records[0] == {"name": "Kim", "email": "kim@example.com", "age": "31"}

    def test_explicit_fieldnames_and_mapper(self, users_csv):
        source = CsvSource(
            users_csv,
            fieldnames=["n", "e", "a"],
            lines_to_skip=1,
            mapper=lambda r: (r["n"], int(r["a"])),
        )
        source.open({})
        assert _drain(source) == [("Kim", 31), ("Lee", 42), ("Park", 27)]

    def test_resume_from_position(self, users_csv):
        source = CsvSource(users_csv)
        source.open({})
        source.read()
        context: dict = {}
        source.update(context)
        assert context == {"csv:users.csv.position": 1}

        resumed = CsvSource(users_csv)
        resumed.open(context)
        assert [r["name"] for r in _drain(resumed)] == ["Lee", "Park"]

    def test_wrong_field_count_is_a_read_error(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("a,b\n1,2\n3\n4,5\n", encoding="utf-8")
        source = CsvSource(path)
        source.open({})
        assert source.read() == {"a": "1", "b": "2"}
        with pytest.raises(ValueError, match="line 3"):
            source.read()
        assert source.read() == {"a": "4", "b": "5"}
        assert source.position() == 3

    def test_lenient_mode(self, tmp_path):
        path = tmp_path / "short.csv"
        path.write_text("a,b\n1\n", encoding="utf-8")
        source = CsvSource(path, strict=False)
        source.open({})
        assert source.read() == {"a": "1"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ResourceError):
            CsvSource(tmp_path / "nope.csv").open({})

    def test_read_before_open(self, users_csv):
        with pytest.raises(RuntimeError):
            CsvSource(users_csv).read()


class TestSqlQuerySource:
    @pytest.fixture()
    def conn(self):
        conn = sqlite3.connect(":memory:")
        conn.execute("CREATE TABLE orders (id INTEGER PRIMARY KEY, amount INTEGER)")
        conn.executemany("INSERT INTO orders VALUES (?, ?)", [(i, i * 1000) for i in range(1, 6)])
        conn.commit()
        yield conn
        conn.close()

    def test_rows_as_dicts(self, conn):
        source = SqlQuerySource(conn, "SELECT id, amount FROM orders WHERE amount >= ? ORDER BY id", (3000,))
        source.open({})
        assert _drain(source) == [
            {"id": 3, "amount": 3000},
            {"id": 4, "amount": 4000},
            {"id": 5, "amount": 5000},
        ]

    def test_result_set_fixed_at_open(self, conn):
        source = SqlQuerySource(conn, "SELECT id FROM orders ORDER BY id", mapper=lambda r: r["id"])
        source.open({})
        conn.execute("DELETE FROM orders")
        assert _drain(source) == [1, 2, 3, 4, 5]

    def test_resume(self, conn):
        source = SqlQuerySource(conn, "SELECT id FROM orders ORDER BY id", mapper=lambda r: r["id"], name="orders")
        source.open({"orders.position": 2})
        assert _drain(source) == [3, 4, 5]

    def test_without_saved_state_reads_from_the_top(self, conn):
        source = SqlQuerySource(
            conn,
            "SELECT id FROM orders WHERE amount >= ? ORDER BY id",
            (3000,),
            mapper=lambda r: r["id"],
            name="orders",
            save_state=False,
        )
        source.open({"orders.position": 2})
        assert _drain(source) == [3, 4, 5]
        context: dict = {}
        source.update(context)
        assert context == {}

    def test_bad_query(self, conn):
        with pytest.raises(ResourceError):
            SqlQuerySource(conn, "SELECT * FROM missing").open({})

    def test_for_repository_uses_shared_connection(self, sqlite_repository):
        source = SqlQuerySource.for_repository(
            sqlite_repository, "SELECT job_name FROM batch_job_instances", mapper=lambda r: r["job_name"]
        )
        source.open({})
        assert _drain(source) == []


class TestIterableSource:
    def test_factory_reopens(self):
        source = IterableSource(lambda: iter([1, 2, 3]))
        source.open({})
        assert _drain(source) == [1, 2, 3]
        source.open({"iterable.position": 1})
        assert _drain(source) == [2, 3]

    def test_resume_past_end(self):
        source = IterableSource([1, 2])
        source.open({"iterable.position": 5})
        assert source.read() is END_OF_STREAM
        assert source.position() == 2

    def test_end_of_stream_is_falsy_singleton(self):
        assert not END_OF_STREAM
        assert repr(END_OF_STREAM) == "END_OF_STREAM"

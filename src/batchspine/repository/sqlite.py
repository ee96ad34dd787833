"""SQLite run repository.

Durable bookkeeping of job instances, executions, step executions and the
skip log in the ``batch_*`` tables (DDL in :mod:`batchspine.core.schema`).

Architecture:

    .. code-block:: text

        SqliteJobRepository — one connection, one lock
        ┌───────────────────────────────────────────────────────────┐
        │  transaction()                                            │
        │    depth 0 → BEGIN IMMEDIATE ... COMMIT / ROLLBACK        │
        │    depth n → SAVEPOINT sp_n ... RELEASE / ROLLBACK TO     │
        │                                                           │
        │  create_execution()   check-and-create inside one         │
        │                       IMMEDIATE transaction; the UNIQUE   │
        │                       (job_name, instance_key) constraint │
        │                       backs it up across processes        │
        │                                                           │
        │  A SqlSink on the same connection joins the chunk         │
        │  transaction, so the items and the checkpoint commit      │
        │  together.                                                │
        └───────────────────────────────────────────────────────────┘

Example:
    >>> repo = SqliteJobRepository.connect("runs.db")
    >>> execution = repo.create_execution("orderProcessJob", params)
    >>> repo.get_execution(execution.id).status
    <BatchStatus.STARTING: 'STARTING'>
"""

from __future__ import annotations

import contextlib
import json
import sqlite3
import threading
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

from batchspine.core.config import get_settings
from batchspine.core.errors import RepositoryError
from batchspine.core.logging import get_logger
from batchspine.core.schema import create_tables
from batchspine.execution.models import (
    COUNTER_FIELDS,
    BatchStatus,
    JobExecution,
    JobInstance,
    SkipRecord,
    StepExecution,
    StepStatus,
    utcnow,
)
from batchspine.execution.parameters import JobParameters
from batchspine.repository.base import JobRepository

logger = get_logger(__name__)

_EXECUTION_COLUMNS = """
    id, instance_id, job_name, params_json, status, created_at,
    started_at, ended_at, exit_description, failures_json
"""

_STEP_COLUMNS = (
    "id, job_execution_id, step_name, status, "
    + ", ".join(COUNTER_FIELDS)
    + ", context_json, started_at, ended_at, exit_description"
)

_SKIP_COLUMNS = """
    id, step_execution_id, job_execution_id, phase, item_repr,
    error_type, error_message, created_at
"""


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteJobRepository(JobRepository):
    """Run repository backed by a sqlite3 connection.

    The connection may be shared with a :class:`~batchspine.io.sinks.SqlSink`;
    every access goes through ``self._lock`` so one connection can serve
    several launcher threads.
    """

    def __init__(self, conn: sqlite3.Connection, *, create_schema: bool = True):
        """Initialize with a database connection.

        Args:
            conn: sqlite3 connection (open it with ``check_same_thread=False``
                when the launcher runs jobs on worker threads)
            create_schema: Create the ``batch_*`` tables if missing
        """
        self._conn = conn
        self._lock = threading.RLock()
        self._depth = 0
        if create_schema:
            with self._lock:
                create_tables(conn)

    @classmethod
    def connect(cls, path: str | None = None) -> SqliteJobRepository:
        """Open (and create) the repository at ``path`` or ``BATCH_DATABASE_PATH``."""
        path = path or get_settings().database_path
        if path != ":memory:":
            Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            path = str(Path(path).expanduser())
        conn = sqlite3.connect(path, check_same_thread=False)
        return cls(conn)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> threading.RLock:
        """Guards the shared connection; hold it for any direct use."""
        return self._lock

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Atomic unit on the shared connection; nests via savepoints."""
        with self._lock:
            depth = self._depth
            if depth == 0:
                if self._conn.in_transaction:
                    self._conn.commit()
                self._conn.execute("BEGIN IMMEDIATE")
            else:
                self._conn.execute(f"SAVEPOINT sp_{depth}")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if depth == 0:
                    self._conn.rollback()
                else:
                    self._conn.execute(f"ROLLBACK TO sp_{depth}")
                    self._conn.execute(f"RELEASE sp_{depth}")
                raise
            self._depth -= 1
            if depth == 0:
                self._conn.commit()
            else:
                self._conn.execute(f"RELEASE sp_{depth}")

    @contextlib.contextmanager
    def _reading(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            try:
                yield self._conn.cursor()
            except sqlite3.Error as e:
                raise RepositoryError(f"Repository read failed: {e}", cause=e) from e

    # =========================================================================
    # INSTANCES
    # =========================================================================

    def find_instance(self, job_name: str, params: JobParameters) -> JobInstance | None:
        key = params.instance_key(job_name)
        with self._reading() as cursor:
            cursor.execute(
                """
                SELECT id, job_name, instance_key, params_json, created_at
                FROM batch_job_instances
                WHERE job_name = ? AND instance_key = ?
                """,
                (job_name, key),
            )
            row = cursor.fetchone()
        return self._row_to_instance(row) if row else None

    def get_instance(self, instance_id: int) -> JobInstance | None:
        with self._reading() as cursor:
            cursor.execute(
                """
                SELECT id, job_name, instance_key, params_json, created_at
                FROM batch_job_instances
                WHERE id = ?
                """,
                (instance_id,),
            )
            row = cursor.fetchone()
        return self._row_to_instance(row) if row else None

    def list_instances(self, job_name: str | None = None, limit: int = 100) -> list[JobInstance]:
        query = """
            SELECT id, job_name, instance_key, params_json, created_at
            FROM batch_job_instances
            WHERE 1=1
        """
        params: list[Any] = []
        if job_name:
            query += " AND job_name = ?"
            params.append(job_name)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._reading() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._row_to_instance(row) for row in rows]

    # =========================================================================
    # EXECUTIONS
    # =========================================================================

    def create_execution(
        self,
        job_name: str,
        params: JobParameters,
        restartable: bool = True,
    ) -> JobExecution:
        key = params.instance_key(job_name)
        try:
            with self.transaction():
                cursor = self._conn.cursor()
                instance = self.find_instance(job_name, params)
                if instance is None:
                    now = utcnow()
                    cursor.execute(
                        """
                        INSERT INTO batch_job_instances (job_name, instance_key, params_json, created_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        (job_name, key, params.identifying().to_json(), now.isoformat()),
                    )
                    instance = JobInstance(
                        id=cursor.lastrowid,
                        job_name=job_name,
                        instance_key=key,
                        parameters=params.identifying(),
                        created_at=now,
                    )
                    logger.debug("repository.instance_created", job=job_name, instance_id=instance.id)
                else:
                    self._check_can_start(instance, self.get_executions(instance.id), restartable)

                execution = JobExecution(
                    id=0,
                    instance_id=instance.id,
                    job_name=job_name,
                    parameters=params,
                )
                cursor.execute(
                    """
                    INSERT INTO batch_job_executions (
                        instance_id, job_name, params_json, status, created_at, failures_json
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        instance.id,
                        job_name,
                        params.to_json(),
                        execution.status.value,
                        execution.create_time.isoformat(),
                        "[]",
                    ),
                )
                execution.id = cursor.lastrowid
                return execution
        except sqlite3.Error as e:
            raise RepositoryError(f"Could not create execution for {job_name}: {e}", cause=e) from e

    def update_execution(self, execution: JobExecution) -> None:
        with self.transaction():
            self._conn.execute(
                """
                UPDATE batch_job_executions
                SET status = ?, started_at = ?, ended_at = ?, exit_description = ?, failures_json = ?
                WHERE id = ?
                """,
                (
                    execution.status.value,
                    _ts(execution.start_time),
                    _ts(execution.end_time),
                    execution.exit_description,
                    json.dumps(execution.failures, default=str),
                    execution.id,
                ),
            )

    def get_execution(self, execution_id: int) -> JobExecution | None:
        with self._reading() as cursor:
            cursor.execute(
                f"SELECT {_EXECUTION_COLUMNS} FROM batch_job_executions WHERE id = ?",
                (execution_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._hydrate(self._row_to_execution(row))

    def get_executions(self, instance_id: int) -> list[JobExecution]:
        with self._reading() as cursor:
            cursor.execute(
                f"SELECT {_EXECUTION_COLUMNS} FROM batch_job_executions WHERE instance_id = ? ORDER BY id ASC",
                (instance_id,),
            )
            rows = cursor.fetchall()
            return [self._hydrate(self._row_to_execution(row)) for row in rows]

    def list_executions(
        self,
        job_name: str | None = None,
        status: BatchStatus | None = None,
        limit: int = 100,
    ) -> list[JobExecution]:
        query = f"SELECT {_EXECUTION_COLUMNS} FROM batch_job_executions WHERE 1=1"
        params: list[Any] = []
        if job_name:
            query += " AND job_name = ?"
            params.append(job_name)
        if status:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._reading() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
            return [self._hydrate(self._row_to_execution(row)) for row in rows]

    def _hydrate(self, execution: JobExecution) -> JobExecution:
        cursor = self._conn.cursor()
        cursor.execute(
            f"SELECT {_STEP_COLUMNS} FROM batch_step_executions WHERE job_execution_id = ? ORDER BY id ASC",
            (execution.id,),
        )
        execution.step_executions = [self._row_to_step(row) for row in cursor.fetchall()]
        return execution

    # =========================================================================
    # STEPS
    # =========================================================================

    def add_step_execution(self, job_execution: JobExecution, step_name: str) -> StepExecution:
        with self.transaction():
            cursor = self._conn.cursor()
            cursor.execute(
                """
                INSERT INTO batch_step_executions (job_execution_id, step_name, status, context_json)
                VALUES (?, ?, ?, ?)
                """,
                (job_execution.id, step_name, StepStatus.READY.value, "{}"),
            )
            step = StepExecution(
                id=cursor.lastrowid,
                job_execution_id=job_execution.id,
                step_name=step_name,
            )
        job_execution.step_executions.append(step)
        return step

    def update_step_execution(self, step_execution: StepExecution) -> None:
        assignments = ", ".join(f"{name} = ?" for name in COUNTER_FIELDS)
        with self.transaction():
            self._conn.execute(
                f"""
                UPDATE batch_step_executions
                SET status = ?, {assignments}, context_json = ?,
                    started_at = ?, ended_at = ?, exit_description = ?
                WHERE id = ?
                """,
                (
                    step_execution.status.value,
                    *(getattr(step_execution, name) for name in COUNTER_FIELDS),
                    json.dumps(step_execution.execution_context, default=str),
                    _ts(step_execution.start_time),
                    _ts(step_execution.end_time),
                    step_execution.exit_description,
                    step_execution.id,
                ),
            )

    def get_last_step_execution(self, instance_id: int, step_name: str) -> StepExecution | None:
        with self._reading() as cursor:
            cursor.execute(
                f"""
                SELECT {", ".join("s." + c.strip() for c in _STEP_COLUMNS.split(","))}
                FROM batch_step_executions s
                JOIN batch_job_executions e ON e.id = s.job_execution_id
                WHERE e.instance_id = ? AND s.step_name = ?
                ORDER BY s.id DESC
                LIMIT 1
                """,
                (instance_id, step_name),
            )
            row = cursor.fetchone()
        return self._row_to_step(row) if row else None

    # =========================================================================
    # SKIP LOG
    # =========================================================================

    def record_skip(self, record: SkipRecord) -> SkipRecord:
        with self.transaction():
            cursor = self._conn.cursor()
            cursor.execute(
                """
                INSERT INTO batch_skip_log (
                    step_execution_id, job_execution_id, phase, item_repr,
                    error_type, error_message, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.step_execution_id,
                    record.job_execution_id,
                    record.phase,
                    record.item_repr,
                    record.error_type,
                    record.error_message,
                    record.created_at.isoformat(),
                ),
            )
            record.id = cursor.lastrowid
        return record

    def get_skips(self, step_execution_id: int) -> list[SkipRecord]:
        with self._reading() as cursor:
            cursor.execute(
                f"SELECT {_SKIP_COLUMNS} FROM batch_skip_log WHERE step_execution_id = ? ORDER BY id ASC",
                (step_execution_id,),
            )
            rows = cursor.fetchall()
        return [self._row_to_skip(row) for row in rows]

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _row_to_instance(self, row: tuple) -> JobInstance:
        return JobInstance(
            id=row[0],
            job_name=row[1],
            instance_key=row[2],
            parameters=JobParameters.from_json(row[3]),
            created_at=_parse_ts(row[4]),
        )

    def _row_to_execution(self, row: tuple) -> JobExecution:
        return JobExecution(
            id=row[0],
            instance_id=row[1],
            job_name=row[2],
            parameters=JobParameters.from_json(row[3]),
            status=BatchStatus(row[4]),
            create_time=_parse_ts(row[5]),
            start_time=_parse_ts(row[6]),
            end_time=_parse_ts(row[7]),
            exit_description=row[8],
            failures=json.loads(row[9]) if row[9] else [],
        )

    def _row_to_step(self, row: tuple) -> StepExecution:
        counters = dict(zip(COUNTER_FIELDS, row[4 : 4 + len(COUNTER_FIELDS)]))
        rest = row[4 + len(COUNTER_FIELDS) :]
        return StepExecution(
            id=row[0],
            job_execution_id=row[1],
            step_name=row[2],
            status=StepStatus(row[3]),
            **counters,
            execution_context=json.loads(rest[0]) if rest[0] else {},
            start_time=_parse_ts(rest[1]),
            end_time=_parse_ts(rest[2]),
            exit_description=rest[3],
        )

    def _row_to_skip(self, row: tuple) -> SkipRecord:
        return SkipRecord(
            id=row[0],
            step_execution_id=row[1],
            job_execution_id=row[2],
            phase=row[3],
            item_repr=row[4],
            error_type=row[5],
            error_message=row[6],
            created_at=_parse_ts(row[7]),
        )

"""
Order processing jobs.

Four jobs over a sqlite ``orders`` / ``users`` schema that share the run
repository's connection, so item writes commit together with the step
checkpoint:

    csvToDbJob         users.csv ─► users                         chunk 10
    orderProcessJob    PENDING orders ─► COMPLETED / PROCESSING   chunk 5
    faultTolerantJob   as above, skipping and retrying bad orders chunk 3
    parameterJob       orders in [startDate, endDate] with
                       amount >= minAmount, status by processingMode  chunk 3

Orders become eligible ten minutes after ``order_date``.  Amounts below
10 000 complete immediately; larger ones go to PROCESSING.

Example:
    >>> repository = SqliteJobRepository.connect(":memory:")
    >>> registry = build_registry(repository)
    >>> seed_orders(repository.connection)
    >>> launcher = JobLauncher(repository)
    >>> JobTrigger(launcher, registry).fire("orderProcessJob", unique=True).outcome
    <Outcome.CLEAN: 'CLEAN'>
"""

from __future__ import annotations

import random
import sqlite3
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from batchspine.core.logging import get_logger
from batchspine.execution.fault_policy import FaultPolicy
from batchspine.execution.job import ChunkStep, Job, scoped
from batchspine.execution.models import utcnow
from batchspine.execution.parameters import (
    JobParameters,
    JobParametersValidator,
    ParamDef,
    ParameterType,
    date_format,
    one_of,
)
from batchspine.execution.registry import JobRegistry
from batchspine.execution.trigger import JobTrigger
from batchspine.io.sinks import SqlSink
from batchspine.io.sources import CsvSource, SqlQuerySource
from batchspine.repository.sqlite import SqliteJobRepository
from batchspine.scheduling.trigger import ScheduledTrigger, rolling_window

logger = get_logger(__name__)

USERS_CSV = Path(__file__).with_name("users.csv")

SMALL_ORDER_LIMIT = 10_000
ELIGIBLE_AFTER = timedelta(minutes=10)
PROCESSING_MODES = ("FAST", "NORMAL", "CAREFUL")

CUSTOMERS = ("김철수", "이영희", "박민수", "최지원", "정수연", "한승호", "양미래", "임도현", "백지연", "홍길동")
ERROR_CUSTOMER = "에러고객"

_TS_FORMAT = "%Y-%m-%d %H:%M:%S"


def _ts(value: datetime | None) -> str | None:
    return value.strftime(_TS_FORMAT) if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.strptime(value, _TS_FORMAT) if value else None


# =============================================================================
# Domain
# =============================================================================


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderStateError(RuntimeError):
    """Order is in a state that may clear on a second attempt."""


@dataclass
class Order:
    id: int | None
    order_number: str
    customer_name: str
    amount: int
    status: OrderStatus = OrderStatus.PENDING
    order_date: datetime | None = None
    processed_date: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Order:
        return cls(
            id=row["id"],
            order_number=row["order_number"],
            customer_name=row["customer_name"],
            amount=row["amount"],
            status=OrderStatus(row["status"]),
            order_date=_parse_ts(row["order_date"]),
            processed_date=_parse_ts(row["processed_date"]),
        )

    def update_row(self) -> tuple[str, str | None, int | None]:
        """Values for ``UPDATE orders SET status = ?, processed_date = ? WHERE id = ?``."""
        return (self.status.value, _ts(self.processed_date), self.id)


@dataclass
class User:
    name: str
    email: str
    age: int
    city: str

    @classmethod
    def from_record(cls, record: dict[str, str]) -> User:
        # the id column is assigned by the database
        return cls(name=record["name"], email=record["email"], age=int(record["age"]), city=record["city"])


# =============================================================================
# Schema and test data
# =============================================================================

ORDERS_DDL = """
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_number TEXT NOT NULL,
        customer_name TEXT NOT NULL,
        amount INTEGER NOT NULL,
        status TEXT NOT NULL,
        order_date TEXT NOT NULL,
        processed_date TEXT
    )
"""

USERS_DDL = """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        age INTEGER NOT NULL,
        city TEXT NOT NULL
    )
"""

ORDER_COLUMNS = "id, order_number, customer_name, amount, status, order_date, processed_date"
UPDATE_ORDER_SQL = "UPDATE orders SET status = ?, processed_date = ? WHERE id = ?"
INSERT_USER_SQL = "INSERT INTO users (name, email, age, city) VALUES (:name, :email, :age, :city)"


def create_tables(conn: sqlite3.Connection) -> None:
    conn.execute(ORDERS_DDL)
    conn.execute(USERS_DDL)
    conn.commit()


def insert_order(conn: sqlite3.Connection, order: Order) -> Order:
    cursor = conn.execute(
        "INSERT INTO orders (order_number, customer_name, amount, status, order_date, processed_date)"
        " VALUES (?, ?, ?, ?, ?, ?)",
        (
            order.order_number,
            order.customer_name,
            order.amount,
            order.status.value,
            _ts(order.order_date),
            _ts(order.processed_date),
        ),
    )
    return replace(order, id=cursor.lastrowid)


def seed_orders(
    conn: sqlite3.Connection,
    count: int = 15,
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[Order]:
    """Replace all orders with ``count`` PENDING ones placed 15 to 134 minutes ago."""
    now = now or _now()
    rng = rng or random.Random()
    conn.execute("DELETE FROM orders")
    orders = [
        insert_order(
            conn,
            Order(
                id=None,
                order_number=f"ORD{i:05d}",
                customer_name=rng.choice(CUSTOMERS),
                amount=rng.randint(1, 30) * 1000,
                order_date=now - timedelta(minutes=rng.randint(15, 134)),
            ),
        )
        for i in range(1, count + 1)
    ]
    conn.commit()
    logger.info("orders.seeded", count=len(orders))
    return orders


def _now() -> datetime:
    # naive UTC, matching the stored timestamps
    return utcnow().replace(tzinfo=None, microsecond=0)


# =============================================================================
# Processors
# =============================================================================


def process_order(order: Order) -> Order:
    """Small orders complete immediately; the rest go to PROCESSING."""
    status = OrderStatus.COMPLETED if order.amount < SMALL_ORDER_LIMIT else OrderStatus.PROCESSING
    logger.debug("order.processed", order=order.order_number, status=status.value)
    return replace(order, status=status, processed_date=_now())


def check_order(order: Order) -> Order:
    """Reject orders that cannot be processed, then process.

    Raises:
        RuntimeError: customer record is broken
        ValueError: negative amount
        OrderStateError: order flagged for a retry
    """
    if order.customer_name == ERROR_CUSTOMER:
        raise RuntimeError(f"Customer data error on {order.order_number}")
    if order.amount < 0:
        raise ValueError(f"Negative amount on {order.order_number}: {order.amount}")
    if "RETRY" in order.order_number:
        raise OrderStateError(f"Order {order.order_number} is not ready")
    return process_order(order)


def mode_processor(mode: str):
    """Status assignment for a ``processingMode``."""
    mode = mode.upper()

    def apply(order: Order) -> Order:
        if mode == "FAST":
            status = OrderStatus.COMPLETED
        elif mode == "NORMAL":
            status = OrderStatus.COMPLETED if order.amount < SMALL_ORDER_LIMIT else OrderStatus.PROCESSING
        else:
            status = OrderStatus.PROCESSING
        return replace(order, status=status, processed_date=_now())

    return apply


# =============================================================================
# Jobs
# =============================================================================


def _pending_orders(repository: SqliteJobRepository, name: str) -> Any:
    def build(_params: JobParameters) -> SqlQuerySource:
        cutoff = _ts(_now() - ELIGIBLE_AFTER)
        return SqlQuerySource.for_repository(
            repository,
            f"SELECT {ORDER_COLUMNS} FROM orders"
            " WHERE status = 'PENDING' AND order_date < ? ORDER BY order_date, id",
            (cutoff,),
            mapper=Order.from_row,
            name=name,
            # written orders leave the result set, so a restart starts from the top
            save_state=False,
        )

    return scoped(build)


def _order_writer(repository: SqliteJobRepository) -> SqlSink:
    return SqlSink.for_repository(repository, UPDATE_ORDER_SQL, mapper=Order.update_row)


def order_fault_policy() -> FaultPolicy:
    return FaultPolicy(
        skippable=(RuntimeError, ValueError),
        retryable=(OrderStateError,),
        skip_limit=10,
        retry_limit=3,
    )


def csv_to_db_job(repository: SqliteJobRepository, path: str | Path | None = None) -> Job:
    """users.csv (header skipped) into the ``users`` table, 10 rows per chunk.

    The file comes from ``path``, the ``inputFile`` parameter, or the
    bundled sample, in that order.
    """

    def build_source(params: JobParameters) -> CsvSource:
        return CsvSource(
            path or params.get_string("inputFile") or USERS_CSV,
            fieldnames=["id", "name", "email", "age", "city"],
            lines_to_skip=1,
            mapper=User.from_record,
            name="userCsvReader",
        )

    sink = SqlSink.for_repository(repository, INSERT_USER_SQL, mapper=asdict)
    return Job(
        "csvToDbJob",
        steps=[ChunkStep("csvToDbStep", scoped(build_source), None, sink, chunk_size=10)],
        description="Load users from CSV",
    )


def order_process_job(repository: SqliteJobRepository) -> Job:
    step = ChunkStep(
        "orderProcessStep",
        _pending_orders(repository, "pendingOrderReader"),
        process_order,
        _order_writer(repository),
        chunk_size=5,
    )
    return Job("orderProcessJob", steps=[step], description="Process pending orders")


def fault_tolerant_job(repository: SqliteJobRepository) -> Job:
    step = ChunkStep(
        "faultTolerantStep",
        _pending_orders(repository, "faultTolerantOrderReader"),
        check_order,
        _order_writer(repository),
        chunk_size=3,
        fault_policy=order_fault_policy(),
    )
    return Job("faultTolerantJob", steps=[step], description="Process pending orders, skipping bad ones")


PARAMETER_JOB_VALIDATOR = JobParametersValidator(
    required=[
        ParamDef("startDate", ParameterType.STRING, "First order date (YYYY-MM-DD)", validator=date_format),
        ParamDef("endDate", ParameterType.STRING, "Last order date (YYYY-MM-DD)", validator=date_format),
        ParamDef(
            "minAmount",
            ParameterType.STRING,
            "Smallest amount to process",
            validator=lambda v: v.isdigit(),
            error_message="minAmount must be a non-negative whole number",
        ),
    ],
    optional=[
        ParamDef(
            "processingMode",
            ParameterType.STRING,
            "FAST, NORMAL or CAREFUL (default NORMAL)",
            validator=one_of(*PROCESSING_MODES),
        ),
    ],
)


def parameter_job(repository: SqliteJobRepository) -> Job:
    def build_source(params: JobParameters) -> SqlQuerySource:
        logger.info(
            "orders.window",
            start=params["startDate"],
            end=params["endDate"],
            min_amount=params["minAmount"],
        )
        return SqlQuerySource.for_repository(
            repository,
            f"SELECT {ORDER_COLUMNS} FROM orders"
            " WHERE status = 'PENDING' AND DATE(order_date) BETWEEN ? AND ? AND amount >= ?"
            " ORDER BY order_date, id",
            (params["startDate"], params["endDate"], int(params["minAmount"])),
            mapper=Order.from_row,
            name="parameterOrderReader",
            save_state=False,
        )

    def build_processor(params: JobParameters):
        return mode_processor(params.get_string("processingMode") or "NORMAL")

    step = ChunkStep(
        "parameterStep",
        scoped(build_source),
        scoped(build_processor),
        _order_writer(repository),
        chunk_size=3,
        fault_policy=order_fault_policy(),
    )
    return Job(
        "parameterJob",
        steps=[step],
        validator=PARAMETER_JOB_VALIDATOR,
        description="Process pending orders in a date window",
    )


def build_registry(repository: SqliteJobRepository) -> JobRegistry:
    """Create the example tables and register every example job."""
    with repository.lock:
        create_tables(repository.connection)
    return JobRegistry(
        [
            csv_to_db_job(repository),
            order_process_job(repository),
            fault_tolerant_job(repository),
            parameter_job(repository),
        ]
    )


def scheduled_parameter_job(trigger: JobTrigger, interval_seconds: float = 30) -> ScheduledTrigger:
    """Fire parameterJob over the last seven days of orders at a fixed rate."""
    return ScheduledTrigger(
        trigger,
        "parameterJob",
        interval_seconds=interval_seconds,
        params_supplier=rolling_window(days=7, extra={"minAmount": "7000", "processingMode": "FAST"}),
    )

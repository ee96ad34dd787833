"""
Item sinks: persist a whole chunk in one call.

``write(batch)`` either stores every item of ``batch`` or raises; partial
writes are the sink's own bug.  A sink that writes through a database
connection relies on the chunk transaction for that guarantee and names
the transaction manager that provides it via
:meth:`ItemSink.default_transaction_manager`.
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from batchspine.core.errors import ResourceError
from batchspine.execution.transaction import (
    NoopTransactionManager,
    RepositoryTransactionManager,
    SqliteTransactionManager,
    TransactionManager,
)

if TYPE_CHECKING:
    from batchspine.repository.sqlite import SqliteJobRepository


class ItemSink(ABC):
    """Base class for item sinks."""

    def open(self, context: dict[str, Any]) -> None:
        """Acquire the underlying resource."""

    @abstractmethod
    def write(self, batch: Sequence[Any]) -> None: ...

    def close(self) -> None:
        """Release the underlying resource."""

    def default_transaction_manager(self) -> TransactionManager:
        return NoopTransactionManager()


class ListSink(ItemSink):
    """Collects written items in memory.

    Example:
        >>> sink = ListSink()
        >>> sink.write([1, 2, 3])
        >>> sink.items
        [1, 2, 3]
    """

    def __init__(self) -> None:
        self.items: list[Any] = []
        self.batches: list[list[Any]] = []
        self._lock = threading.Lock()

    def write(self, batch: Sequence[Any]) -> None:
        chunk = list(batch)
        with self._lock:
            self.items.extend(chunk)
            self.batches.append(chunk)


class CallableSink(ItemSink):
    """Hands each batch to a plain function."""

    def __init__(self, fn: Callable[[list[Any]], None]):
        self._fn = fn

    def write(self, batch: Sequence[Any]) -> None:
        self._fn(list(batch))


class SqlSink(ItemSink):
    """Parameterised ``executemany`` over a sqlite3 connection.

    Statements run inside the chunk transaction and are never committed
    by the sink itself.

    Args:
        conn: sqlite3 connection
        sql: INSERT/UPDATE statement with ``?`` or ``:name`` placeholders
        mapper: Converts an item into the statement's parameters
            (tuple for ``?``, dict for ``:name``); defaults to the item
        transaction_manager: Boundary the sink's statements join

    Example:
        >>> sink = SqlSink.for_repository(
        ...     repository,
        ...     "UPDATE orders SET status = ? WHERE id = ?",
        ...     mapper=lambda order: (order.status, order.id),
        ... )
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        sql: str,
        *,
        mapper: Callable[[Any], Sequence[Any] | dict[str, Any]] | None = None,
        transaction_manager: TransactionManager | None = None,
    ):
        self._conn = conn
        self._sql = sql
        self._mapper = mapper
        self._transaction_manager = transaction_manager or SqliteTransactionManager(conn)

    @classmethod
    def for_repository(
        cls,
        repository: SqliteJobRepository,
        sql: str,
        *,
        mapper: Callable[[Any], Sequence[Any] | dict[str, Any]] | None = None,
    ) -> SqlSink:
        """Sink on the repository's connection; items commit with the checkpoint."""
        return cls(
            repository.connection,
            sql,
            mapper=mapper,
            transaction_manager=RepositoryTransactionManager(repository),
        )

    def open(self, context: dict[str, Any]) -> None:
        try:
            self._conn.execute("SELECT 1")
        except sqlite3.Error as e:
            raise ResourceError(f"Sink connection unusable: {e}", cause=e) from e

    def write(self, batch: Sequence[Any]) -> None:
        rows = [self._mapper(item) if self._mapper else item for item in batch]
        self._conn.executemany(self._sql, rows)

    def default_transaction_manager(self) -> TransactionManager:
        return self._transaction_manager


__all__ = ["ItemSink", "ListSink", "CallableSink", "SqlSink"]

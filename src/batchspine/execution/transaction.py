"""Transaction boundaries for chunk commits.

The chunk executor reads, transforms and writes every chunk inside
``transaction_manager.transaction()`` and records the checkpoint in
``repository.transaction()``, inside the same transaction when the manager
shares the repository and right after it otherwise.  What that buys
depends on where the sink writes:

=============================  =============================================
Transaction manager            Guarantee
=============================  =============================================
RepositoryTransactionManager   sink and checkpoint on one sqlite connection:
                               items and checkpoint commit together
SqliteTransactionManager       sink on its own connection: items commit,
                               then the checkpoint; a crash in between
                               re-delivers the chunk (at-least-once)
NoopTransactionManager         sink is atomic per ``write`` call by itself
=============================  =============================================
"""

from __future__ import annotations

import contextlib
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from batchspine.repository.base import JobRepository


class TransactionManager(ABC):
    """Opens the atomic unit a chunk commits or rolls back as."""

    #: True when the checkpoint update belongs inside this transaction
    shares_repository: bool = False

    @abstractmethod
    def transaction(self) -> contextlib.AbstractContextManager[None]: ...


class NoopTransactionManager(TransactionManager):
    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        yield


class RepositoryTransactionManager(TransactionManager):
    """Joins the run repository's own transaction."""

    shares_repository = True

    def __init__(self, repository: JobRepository):
        self.repository = repository

    def transaction(self) -> contextlib.AbstractContextManager[None]:
        return self.repository.transaction()


class SqliteTransactionManager(TransactionManager):
    """BEGIN/COMMIT/ROLLBACK on a dedicated sqlite3 connection.

    Nested ``transaction()`` calls become savepoints, so a failed write
    attempt can be undone without losing the rest of the chunk.
    """

    def __init__(self, conn: sqlite3.Connection, lock: threading.RLock | None = None):
        self.conn = conn
        self._lock = lock or threading.RLock()
        self._depth = 0

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            depth = self._depth
            if depth == 0:
                if self.conn.in_transaction:
                    self.conn.commit()
                self.conn.execute("BEGIN")
            else:
                self.conn.execute(f"SAVEPOINT tx_{depth}")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if depth == 0:
                    self.conn.rollback()
                else:
                    self.conn.execute(f"ROLLBACK TO tx_{depth}")
                    self.conn.execute(f"RELEASE tx_{depth}")
                raise
            self._depth -= 1
            if depth == 0:
                self.conn.commit()
            else:
                self.conn.execute(f"RELEASE tx_{depth}")


__all__ = [
    "TransactionManager",
    "NoopTransactionManager",
    "RepositoryTransactionManager",
    "SqliteTransactionManager",
]

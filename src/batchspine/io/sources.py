"""
Item sources: pull records one at a time.

Every source follows the same lifecycle::

    open(context) ─► read() ... read() ─► END_OF_STREAM ─► close()
                       │
                       └── update(context) after each committed chunk

Resumable sources store their cursor position in the step execution
context on ``update`` and skip that many records on the next ``open``,
so a restarted step neither loses nor re-delivers committed records.

A query whose result set shrinks as items are written (for example
``WHERE status = 'PENDING'`` with a sink that changes the status) must
not skip on restart: the committed rows are already gone from it.  Such
process-indicator readers pass ``save_state=False`` and start from the
first row every time.

Failure to open the underlying resource raises
:class:`~batchspine.core.errors.ResourceError`.  Errors raised by
``read()`` are handed to the step's fault policy.

Usage:
    from batchspine.io.sources import CsvSource

    source = CsvSource(
        "users.csv",
        fieldnames=["id", "name", "email", "age", "city"],
        lines_to_skip=1,
    )
"""

from __future__ import annotations

import csv
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

from batchspine.core.errors import ResourceError
from batchspine.core.logging import get_logger

if TYPE_CHECKING:
    from batchspine.repository.sqlite import SqliteJobRepository

logger = get_logger(__name__)


class _EndOfStream:
    _instance: _EndOfStream | None = None

    def __new__(cls) -> _EndOfStream:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"

    def __bool__(self) -> bool:
        return False


END_OF_STREAM = _EndOfStream()


class ItemSource(ABC):
    """Base class for item sources."""

    name: str = "source"

    def open(self, context: dict[str, Any]) -> None:
        """Acquire the underlying resource; ``context`` is the saved checkpoint."""

    @abstractmethod
    def read(self) -> Any:
        """Return the next item, or ``END_OF_STREAM`` once exhausted."""
        ...

    def update(self, context: dict[str, Any]) -> None:
        """Write restart state into ``context`` (called at each commit)."""

    def close(self) -> None:
        """Release the underlying resource."""


class ResumableSource(ItemSource):
    """A source whose position is a count of records consumed.

    ``read()`` implementations call :meth:`_advance` once per record taken
    off the underlying cursor, *before* mapping it, so a record whose
    mapping fails still counts as consumed.

    With ``save_state=False`` nothing is written to the context and
    ``open`` never skips.
    """

    def __init__(self, name: str, save_state: bool = True):
        self.name = name
        self.save_state = save_state
        self._position = 0

    @property
    def context_key(self) -> str:
        return f"{self.name}.position"

    def position(self) -> int:
        return self._position

    def _advance(self) -> None:
        self._position += 1

    def open(self, context: dict[str, Any]) -> None:
        start = int(context.get(self.context_key, 0)) if self.save_state else 0
        self._position = 0
        self._open_resource()
        for _ in range(start):
            if not self._skip_one():
                break
        if start:
            logger.info("source.resumed", source=self.name, position=self._position)

    def update(self, context: dict[str, Any]) -> None:
        if self.save_state:
            context[self.context_key] = self._position

    @abstractmethod
    def _open_resource(self) -> None: ...

    @abstractmethod
    def _skip_one(self) -> bool:
        """Consume one raw record without mapping it; False at end."""
        ...


class IterableSource(ResumableSource):
    """Items from an iterable, or from a factory returning a fresh iterable.

    Pass a factory (any zero-argument callable) when the step may be
    reopened; a plain iterator can only be consumed once.

    Example:
        >>> source = IterableSource(range(10))
        >>> source.open({})
        >>> source.read()
        0
    """

    def __init__(
        self,
        items: Iterable[Any] | Callable[[], Iterable[Any]],
        name: str = "iterable",
        save_state: bool = True,
    ):
        super().__init__(name, save_state)
        self._items = items
        self._iterator: Iterator[Any] | None = None

    def _open_resource(self) -> None:
        items = self._items() if callable(self._items) else self._items
        self._iterator = iter(items)

    def _skip_one(self) -> bool:
        if next(self._iterator, END_OF_STREAM) is END_OF_STREAM:
            return False
        self._advance()
        return True

    def read(self) -> Any:
        if self._iterator is None:
            raise RuntimeError(f"Source {self.name} is not open")
        item = next(self._iterator, END_OF_STREAM)
        if item is not END_OF_STREAM:
            self._advance()
        return item

    def close(self) -> None:
        self._iterator = None


class CsvSource(ResumableSource):
    """Records from a delimited text file.

    Rows become dicts keyed by ``fieldnames`` (or by the header row when
    ``fieldnames`` is None), then pass through ``mapper`` if given.  Blank
    lines are ignored.

    Args:
        path: File to read
        fieldnames: Column names; None reads them from the first row
        lines_to_skip: Leading lines to discard (e.g. a header when
            ``fieldnames`` is given)
        delimiter: Field separator
        encoding: File encoding
        mapper: Converts the row dict into the item
        strict: Raise ``ValueError`` for rows with the wrong field count
        name: Key prefix for the restart position
        save_state: Record the position for restart
    """

    def __init__(
        self,
        path: str | Path,
        *,
        fieldnames: Sequence[str] | None = None,
        lines_to_skip: int = 0,
        delimiter: str = ",",
        encoding: str = "utf-8",
        mapper: Callable[[dict[str, str]], Any] | None = None,
        strict: bool = True,
        name: str | None = None,
        save_state: bool = True,
    ):
        self._path = Path(path)
        super().__init__(name or f"csv:{self._path.name}", save_state)
        self._fieldnames = list(fieldnames) if fieldnames else None
        self._lines_to_skip = lines_to_skip
        self._delimiter = delimiter
        self._encoding = encoding
        self._mapper = mapper
        self._strict = strict
        self._file = None
        self._reader = None
        self._columns: list[str] | None = None
        self._line = 0

    @property
    def path(self) -> Path:
        return self._path

    def _open_resource(self) -> None:
        try:
            self._file = open(self._path, encoding=self._encoding, newline="")
        except OSError as e:
            raise ResourceError(f"Cannot open {self._path}: {e}", cause=e) from e
        self._reader = csv.reader(self._file, delimiter=self._delimiter)
        self._line = 0
        for _ in range(self._lines_to_skip):
            if self._next_row() is None:
                break
        self._columns = self._fieldnames
        if self._columns is None:
            header = self._next_row()
            self._columns = [h.strip() for h in header] if header else []

    def _next_row(self) -> list[str] | None:
        for row in self._reader:
            self._line = self._reader.line_num
            if row:
                return row
        return None

    def _skip_one(self) -> bool:
        if self._next_row() is None:
            return False
        self._advance()
        return True

    def read(self) -> Any:
        if self._reader is None:
            raise RuntimeError(f"Source {self.name} is not open")
        row = self._next_row()
        if row is None:
            return END_OF_STREAM
        self._advance()
        if self._strict and len(row) != len(self._columns):
            raise ValueError(
                f"{self._path.name} line {self._line}: expected {len(self._columns)} fields, got {len(row)}"
            )
        record = dict(zip(self._columns, (value.strip() for value in row)))
        return self._mapper(record) if self._mapper else record

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
        self._file = None
        self._reader = None


class SqlQuerySource(ResumableSource):
    """Rows of a SQL query on a sqlite3 connection.

    The result set is materialized at ``open`` so the same connection can
    be written to (for example by a status-updating sink) while items are
    handed out.  Rows are dicts keyed by column name before ``mapper``.

    Args:
        conn: sqlite3 connection
        query: SELECT statement, ``?`` placeholders
        params: Bound values for the placeholders
        mapper: Converts the row dict into the item
        lock: Held while querying when the connection is shared across threads
        name: Key prefix for the restart position
        save_state: False for process-indicator queries (see module docs)
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        query: str,
        params: Sequence[Any] = (),
        *,
        mapper: Callable[[dict[str, Any]], Any] | None = None,
        lock: threading.RLock | None = None,
        name: str = "sql",
        save_state: bool = True,
    ):
        super().__init__(name, save_state)
        self._conn = conn
        self._query = query
        self._params = tuple(params)
        self._mapper = mapper
        self._lock = lock or threading.RLock()
        self._rows: list[dict[str, Any]] = []
        self._index = 0

    @classmethod
    def for_repository(
        cls,
        repository: SqliteJobRepository,
        query: str,
        params: Sequence[Any] = (),
        *,
        mapper: Callable[[dict[str, Any]], Any] | None = None,
        name: str = "sql",
        save_state: bool = True,
    ) -> SqlQuerySource:
        """Query the repository's connection under the repository lock."""
        return cls(
            repository.connection,
            query,
            params,
            mapper=mapper,
            lock=repository.lock,
            name=name,
            save_state=save_state,
        )

    def _open_resource(self) -> None:
        with self._lock:
            try:
                cursor = self._conn.cursor()
                cursor.execute(self._query, self._params)
                columns = [d[0] for d in cursor.description or ()]
                self._rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise ResourceError(f"Query failed for source {self.name}: {e}", cause=e) from e
        self._index = 0
        logger.debug("source.query_opened", source=self.name, rows=len(self._rows))

    def _skip_one(self) -> bool:
        if self._index >= len(self._rows):
            return False
        self._index += 1
        self._advance()
        return True

    def read(self) -> Any:
        if self._index >= len(self._rows):
            return END_OF_STREAM
        row = self._rows[self._index]
        self._index += 1
        self._advance()
        return self._mapper(row) if self._mapper else row

    def close(self) -> None:
        self._rows = []
        self._index = 0


__all__ = [
    "END_OF_STREAM",
    "ItemSource",
    "ResumableSource",
    "IterableSource",
    "CsvSource",
    "SqlQuerySource",
]

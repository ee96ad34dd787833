"""Chunk executor — read, transform and write one step in committed chunks.

Manifesto:
    A step's progress is only ever what has been committed.  Each chunk
    cycle either lands completely (items written, counters advanced,
    cursor checkpointed, skips logged) or not at all.

ARCHITECTURE
────────────
::

    ChunkExecutor.execute()
      loop:
        stop requested? ─────────────────────────────► STOPPED
        ┌─ transaction_manager.transaction() ───────────────────┐
        │ fill:  read ─► transform ─► buffer                    │
        │          │        │                                  │
        │          └────────┴─► FaultTracker.decide()           │
        │                         RETRY │ SKIP │ FATAL ──► raise │
        │ write: sink.write(buffer)  (retry on RETRY)           │
        └───────────────────────────────────────────────────────┘
        ┌─ repository.transaction() ────────────────────────────┐
        │ commit: counters += chunk, source.update(ctx),        │
        │         update_step_execution, record_skip            │
        └───────────────────────────────────────────────────────┘
        end of stream? ──────────────────────────────► COMPLETED

    A sink writing through the repository connection uses a
    RepositoryTransactionManager; the commit then runs inside the first
    transaction and items land atomically with the checkpoint.

    On a fatal error the counters and context go back to their pre-chunk
    values, ``rollback_count`` is incremented and the error propagates.

Tags:
    batch, chunk, transaction, fault-tolerance

Doc-Types:
    api-reference
"""

from __future__ import annotations

import copy
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from batchspine.core.errors import ChunkError, ItemError
from batchspine.core.logging import get_logger
from batchspine.execution.fault_policy import FaultDecision, FaultTracker
from batchspine.execution.listeners import StepListener, notify
from batchspine.execution.models import SkipRecord, StepExecution, StepStatus
from batchspine.execution.transaction import TransactionManager
from batchspine.io.sinks import ItemSink
from batchspine.io.sources import END_OF_STREAM, ItemSource
from batchspine.io.transforms import ItemTransform, is_dropped
from batchspine.repository.base import JobRepository

logger = get_logger(__name__)


@dataclass
class Chunk:
    """Transient buffer for one chunk cycle; never persisted."""

    items: list[Any] = field(default_factory=list)
    read: int = 0
    filtered: int = 0
    read_skipped: int = 0
    process_skipped: int = 0
    retries: int = 0
    skips: list[SkipRecord] = field(default_factory=list)
    end_of_stream: bool = False

    @property
    def skipped(self) -> int:
        return self.read_skipped + self.process_skipped


class ChunkExecutor:
    """Drives one step execution through its chunk cycles.

    The fault budgets live in ``tracker`` and are owned by this executor
    alone.  Cancellation is observed between chunks only.
    """

    def __init__(
        self,
        *,
        step_execution: StepExecution,
        source: ItemSource,
        transform: ItemTransform,
        sink: ItemSink,
        chunk_size: int,
        tracker: FaultTracker,
        repository: JobRepository,
        transaction_manager: TransactionManager,
        listeners: Sequence[StepListener] = (),
        stop_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.step_execution = step_execution
        self.source = source
        self.transform = transform
        self.sink = sink
        self.chunk_size = chunk_size
        self.tracker = tracker
        self.repository = repository
        self.transaction_manager = transaction_manager
        self.listeners = list(listeners)
        self.stop_event = stop_event or threading.Event()
        self._sleep = sleep

    def execute(self) -> StepStatus:
        """Run chunk cycles until end of stream or a stop request.

        Returns:
            ``COMPLETED`` or ``STOPPED``

        Raises:
            ItemError: an item failed and the policy declared it fatal
            ChunkError: the sink failed and could not be retried
        """
        while True:
            if self.stop_event.is_set():
                logger.info("step.stop_observed", step=self.step_execution.step_name)
                return StepStatus.STOPPED
            chunk = self.run_chunk()
            if chunk.end_of_stream:
                return StepStatus.COMPLETED

    def run_chunk(self) -> Chunk:
        """Execute and commit exactly one chunk cycle."""
        step = self.step_execution
        counters = step.counters()
        context = copy.deepcopy(step.execution_context)
        budgets = self.tracker.snapshot()

        notify(self.listeners, "before_chunk", step)
        try:
            shared = self.transaction_manager.shares_repository
            with self.transaction_manager.transaction():
                chunk = self._fill()
                if chunk.read == 0 and chunk.end_of_stream:
                    return chunk
                if chunk.items:
                    self._write(chunk)
                if shared:
                    self._commit(chunk)
            if not shared:
                with self.repository.transaction():
                    self._commit(chunk)
        except Exception as e:
            step.restore_counters(counters)
            step.execution_context = context
            step.rollback_count += 1
            self.tracker.restore(budgets)
            logger.warning(
                "chunk.rolled_back",
                step=step.step_name,
                error=type(e).__name__,
                rollback_count=step.rollback_count,
            )
            notify(self.listeners, "after_chunk_error", step, e)
            raise

        logger.debug(
            "chunk.committed",
            step=step.step_name,
            read=chunk.read,
            written=len(chunk.items),
            skipped=chunk.skipped,
            filtered=chunk.filtered,
            commit_count=step.commit_count,
        )
        notify(self.listeners, "after_chunk", step)
        return chunk

    # ── Fill ─────────────────────────────────────────────────────

    def _fill(self) -> Chunk:
        chunk = Chunk()
        while chunk.read < self.chunk_size:
            try:
                item = self.source.read()
            except Exception as e:
                chunk.read += 1
                self._on_read_error(chunk, e)
                continue
            if item is END_OF_STREAM:
                chunk.end_of_stream = True
                break
            chunk.read += 1
            self._process(chunk, item)
        return chunk

    def _on_read_error(self, chunk: Chunk, error: Exception) -> None:
        decision = self.tracker.decide(error, "read")
        if decision == FaultDecision.SKIP:
            chunk.read_skipped += 1
            self._skip(chunk, "read", None, error)
            return
        raise ItemError(f"Read failed: {error}", phase="read", cause=error).with_context(
            step=self.step_execution.step_name,
            step_execution_id=self.step_execution.id,
        ) from error

    def _process(self, chunk: Chunk, item: Any) -> None:
        allow_retry = getattr(self.transform, "retryable", True)
        attempt = 0
        while True:
            attempt += 1
            try:
                output = self.transform.apply(item)
            except Exception as e:
                decision = self.tracker.decide(e, "process", allow_retry=allow_retry, attempt=attempt)
                if decision == FaultDecision.RETRY:
                    chunk.retries += 1
                    logger.info(
                        "item.retry",
                        step=self.step_execution.step_name,
                        error=type(e).__name__,
                        attempt=attempt,
                    )
                    self._backoff(attempt)
                    continue
                if decision == FaultDecision.SKIP:
                    chunk.process_skipped += 1
                    self._skip(chunk, "process", item, e)
                    return
                raise ItemError(
                    f"Processing failed for {item!r}: {e}", item=item, phase="process", cause=e
                ).with_context(
                    step=self.step_execution.step_name,
                    step_execution_id=self.step_execution.id,
                ) from e
            if is_dropped(output):
                chunk.filtered += 1
            else:
                chunk.items.append(output)
            return

    def _skip(self, chunk: Chunk, phase: str, item: Any, error: Exception) -> None:
        chunk.skips.append(SkipRecord.create(self.step_execution, phase, item, error))
        logger.info(
            "item.skipped",
            step=self.step_execution.step_name,
            phase=phase,
            error=type(error).__name__,
            skips_used=self.tracker.skips_used,
        )
        notify(self.listeners, "on_skip", self.step_execution, phase, item, error)

    # ── Write / commit ───────────────────────────────────────────

    def _write(self, chunk: Chunk) -> None:
        attempt = 0
        while True:
            attempt += 1
            try:
                # each attempt in its own savepoint so a failed one leaves nothing behind
                with self.transaction_manager.transaction():
                    self.sink.write(chunk.items)
                return
            except Exception as e:
                decision = self.tracker.decide(e, "write", attempt=attempt)
                if decision == FaultDecision.RETRY:
                    chunk.retries += 1
                    logger.info(
                        "chunk.write_retry",
                        step=self.step_execution.step_name,
                        size=len(chunk.items),
                        error=type(e).__name__,
                        attempt=attempt,
                    )
                    self._backoff(attempt)
                    continue
                raise ChunkError(
                    f"Sink write failed for chunk of {len(chunk.items)}: {e}",
                    size=len(chunk.items),
                    cause=e,
                ).with_context(
                    step=self.step_execution.step_name,
                    step_execution_id=self.step_execution.id,
                ) from e

    def _commit(self, chunk: Chunk) -> None:
        step = self.step_execution
        step.read_count += chunk.read
        step.write_count += len(chunk.items)
        step.filter_count += chunk.filtered
        step.skip_count += chunk.skipped
        step.read_skip_count += chunk.read_skipped
        step.process_skip_count += chunk.process_skipped
        step.retry_count += chunk.retries
        step.commit_count += 1
        self.source.update(step.execution_context)
        self.repository.update_step_execution(step)
        for record in chunk.skips:
            self.repository.record_skip(record)

    def _backoff(self, attempt: int) -> None:
        delay = self.tracker.backoff_delay(attempt)
        if delay > 0:
            self._sleep(delay)

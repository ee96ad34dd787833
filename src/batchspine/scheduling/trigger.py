"""Scheduled trigger — fire a registered job on an interval or cron schedule.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULED TRIGGER                                                            │
│                                                                               │
│   backend tick ──► ScheduledTrigger.tick(now)                                 │
│                       │                                                       │
│                       ├─ now < next_run?            → nothing                 │
│                       ├─ next_run = schedule.after(now)                       │
│                       ├─ SKIP_IF_RUNNING and job running? → skipped           │
│                       ├─ params = params_supplier(now)                        │
│                       └─ JobTrigger.submit(job, params, unique)               │
│                                                                               │
│  Overlap policy is explicit:                                                  │
│  - SKIP_IF_RUNNING (default): a fire is dropped while an execution of the     │
│    job is STARTING/STARTED, here or in another process                        │
│  - RUN_CONCURRENTLY: every fire launches; identical parameter sets are        │
│    still rejected by the run repository                                       │
└──────────────────────────────────────────────────────────────────────────────┘

Example:
    >>> scheduled = ScheduledTrigger(
    ...     trigger,
    ...     "parameterJob",
    ...     interval_seconds=30,
    ...     params_supplier=rolling_window(days=7, extra={"minAmount": "7000"}),
    ... )
    >>> scheduled.start()
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from croniter import croniter

from batchspine.core.config import get_settings
from batchspine.core.errors import ConfigError
from batchspine.core.logging import get_logger
from batchspine.execution.trigger import JobTrigger, RunReport
from batchspine.scheduling.protocol import SchedulerBackend
from batchspine.scheduling.thread_backend import ThreadSchedulerBackend

logger = get_logger(__name__)

ParamsSupplier = Callable[[datetime], Mapping[str, Any]]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class OverlapPolicy(str, Enum):
    SKIP_IF_RUNNING = "SKIP_IF_RUNNING"
    RUN_CONCURRENTLY = "RUN_CONCURRENTLY"


@dataclass
class ScheduleStats:
    fired: int = 0
    skipped_overlap: int = 0
    rejected: int = 0
    last_fired: datetime | None = None


def rolling_window(
    days: int = 7,
    start_key: str = "startDate",
    end_key: str = "endDate",
    extra: Mapping[str, Any] | None = None,
) -> ParamsSupplier:
    """Parameters covering the ``days`` before the fire date, as ISO date strings."""

    def supplier(now: datetime) -> dict[str, Any]:
        today = now.date()
        params: dict[str, Any] = {
            start_key: (today - timedelta(days=days)).isoformat(),
            end_key: today.isoformat(),
        }
        params.update(extra or {})
        return params

    return supplier


class ScheduledTrigger:
    """Fires one registered job on a schedule.

    Args:
        trigger: Launches the job and reports
        job_name: Registered job to fire
        interval_seconds: Fixed rate; the first fire happens on the first tick
        cron: Cron expression (croniter syntax); exclusive with ``interval_seconds``
        params_supplier: Builds the parameters from the fire time
        unique: Add ``run.timestamp`` so every fire is a fresh instance
        overlap: What to do when the job is still running at fire time
    """

    def __init__(
        self,
        trigger: JobTrigger,
        job_name: str,
        *,
        interval_seconds: float | None = None,
        cron: str | None = None,
        params_supplier: ParamsSupplier | None = None,
        unique: bool = True,
        overlap: OverlapPolicy = OverlapPolicy.SKIP_IF_RUNNING,
        clock: Callable[[], datetime] = utcnow,
    ):
        if (interval_seconds is None) == (cron is None):
            raise ConfigError("Give exactly one of interval_seconds or cron")
        if interval_seconds is not None and interval_seconds <= 0:
            raise ConfigError("interval_seconds must be > 0")
        if cron is not None and not croniter.is_valid(cron):
            raise ConfigError(f"Invalid cron expression: {cron!r}")

        self.trigger = trigger
        self.job_name = job_name
        self.interval_seconds = interval_seconds
        self.cron = cron
        self.params_supplier = params_supplier
        self.unique = unique
        self.overlap = overlap
        self.stats = ScheduleStats()
        # tick runs on the backend thread, _on_done on launcher workers
        self._stats_lock = threading.Lock()
        self._clock = clock
        self._in_flight: list[Future[RunReport]] = []
        self._backend: SchedulerBackend | None = None

        now = clock()
        self.next_run: datetime = now if interval_seconds is not None else self._after(now)

    def _after(self, moment: datetime) -> datetime:
        if self.interval_seconds is not None:
            return moment + timedelta(seconds=self.interval_seconds)
        return croniter(self.cron, moment).get_next(datetime)

    def is_running(self) -> bool:
        """True while an execution of the job is in flight here or recorded as running."""
        self._in_flight = [f for f in self._in_flight if not f.done()]
        if self._in_flight:
            return True
        return bool(self.trigger.launcher.repository.get_running_executions(self.job_name))

    def tick(self, now: datetime | None = None) -> Future[RunReport] | None:
        """Fire the job if due; returns the pending report, or None."""
        now = now or self._clock()
        if now < self.next_run:
            return None
        self.next_run = self._after(now)

        if self.overlap == OverlapPolicy.SKIP_IF_RUNNING and self.is_running():
            with self._stats_lock:
                self.stats.skipped_overlap += 1
            logger.info("schedule.skipped_running", job=self.job_name, next_run=self.next_run.isoformat())
            return None

        params = dict(self.params_supplier(now)) if self.params_supplier else {}
        future = self.trigger.submit(self.job_name, params, unique=self.unique)
        with self._stats_lock:
            self.stats.fired += 1
            self.stats.last_fired = now
        self._in_flight.append(future)
        future.add_done_callback(self._on_done)
        logger.info("schedule.fired", job=self.job_name, next_run=self.next_run.isoformat())
        return future

    def _on_done(self, future: Future[RunReport]) -> None:
        error = future.exception()
        if error is not None:
            logger.error("schedule.run_error", job=self.job_name, error=type(error).__name__)
            return
        report = future.result()
        if report.outcome.is_rejection:
            with self._stats_lock:
                self.stats.rejected += 1
        logger.info("schedule.run_finished", job=self.job_name, outcome=report.outcome.value)

    def start(self, backend: SchedulerBackend | None = None, tick_seconds: float | None = None) -> None:
        """Drive :meth:`tick` from ``backend`` (a thread backend by default)."""
        self._backend = backend or ThreadSchedulerBackend()
        self._backend.start(self.tick, tick_seconds or get_settings().scheduler_interval_seconds)

    def stop(self) -> None:
        if self._backend is not None:
            self._backend.stop()
            self._backend = None


__all__ = ["OverlapPolicy", "ScheduleStats", "ScheduledTrigger", "rolling_window"]

"""Recurring job triggers driven by a pluggable timing backend."""

from batchspine.scheduling.protocol import BackendHealth, SchedulerBackend
from batchspine.scheduling.thread_backend import ThreadSchedulerBackend
from batchspine.scheduling.trigger import (
    OverlapPolicy,
    ScheduledTrigger,
    ScheduleStats,
    rolling_window,
)

__all__ = [
    "BackendHealth",
    "SchedulerBackend",
    "ThreadSchedulerBackend",
    "OverlapPolicy",
    "ScheduledTrigger",
    "ScheduleStats",
    "rolling_window",
]

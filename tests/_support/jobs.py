"""Building blocks for test jobs: failing transforms and sinks, blocking sinks."""

from __future__ import annotations

import threading
from typing import Any

from batchspine.execution.fault_policy import FaultPolicy
from batchspine.execution.job import ChunkStep, Job
from batchspine.io.sinks import ItemSink, ListSink
from batchspine.io.sources import IterableSource


class FailOn:
    """Transform raising ``error`` for selected items, optionally only ``times`` times each."""

    def __init__(self, items, error: type[Exception] = ValueError, times: int | None = None):
        self.items = set(items)
        self.error = error
        self.times = times
        self.calls: dict[Any, int] = {}
        self.enabled = True

    def __call__(self, item):
        if self.enabled and item in self.items:
            self.calls[item] = self.calls.get(item, 0) + 1
            if self.times is None or self.calls[item] <= self.times:
                raise self.error(f"bad item {item}")
        return item


class FailingSink(ItemSink):
    """Raises ``error`` on the first ``times`` writes (every write when None)."""

    def __init__(self, error: Exception | None = None, times: int | None = None):
        self.error = error or OSError("disk full")
        self.times = times
        self.attempts = 0
        self.items: list[Any] = []

    def write(self, batch):
        self.attempts += 1
        if self.times is None or self.attempts <= self.times:
            raise self.error
        self.items.extend(batch)


class BlockingSink(ItemSink):
    """Parks the writing thread until released."""

    def __init__(self) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()
        self.items: list[Any] = []

    def write(self, batch):
        self.entered.set()
        if not self.release.wait(timeout=10):
            raise TimeoutError("BlockingSink was never released")
        self.items.extend(batch)


def simple_job(
    name: str = "numbersJob",
    items=range(1, 11),
    transform=None,
    sink: ItemSink | None = None,
    chunk_size: int = 3,
    fault_policy: FaultPolicy | None = None,
    **job_kwargs,
) -> Job:
    """One-step job over ``items``."""
    step = ChunkStep(
        f"{name}.step",
        IterableSource(list(items)),
        transform,
        sink if sink is not None else ListSink(),
        chunk_size=chunk_size,
        fault_policy=fault_policy or FaultPolicy(),
    )
    return Job(name, steps=[step], **job_kwargs)

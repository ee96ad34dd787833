"""Threading-based scheduler backend.

This is the default backend for batch-spine scheduling. It uses a daemon
thread and an Event for shutdown.

┌──────────────────────────────────────────────────────────────────────────────┐
│  THREAD BACKEND ARCHITECTURE                                                  │
│                                                                               │
│   start()                                                                     │
│      │                                                                        │
│      ▼                                                                        │
│   ┌─────────────────────────────────────────────────────────┐                 │
│   │              Daemon Thread (loop)                       │                 │
│   │                                                         │                 │
│   │   while not stop_event.wait(interval):                  │                 │
│   │       tick_count += 1                                   │                 │
│   │       last_tick = now()                                 │                 │
│   │       tick_callback()                                   │                 │
│   └─────────────────────────────────────────────────────────┘                 │
│                                                                               │
│   stop()  →  stop_event.set(); thread.join(timeout=5.0)                       │
│                                                                               │
│  A tick that raises is logged and the loop carries on.                        │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from batchspine.core.logging import get_logger
from batchspine.scheduling.protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class ThreadSchedulerBackend:
    """Threading-based scheduler backend.

    Example:
        >>> backend = ThreadSchedulerBackend()
        >>> backend.start(scheduled.tick, interval_seconds=1.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 1.0
        self._started = False
        self._lock = threading.Lock()

    def start(self, tick_callback: TickCallback, interval_seconds: float = 1.0) -> None:
        """Start the scheduler loop in a daemon thread."""
        if self._started:
            logger.warning("scheduler.already_started", backend=self.name)
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info("scheduler.started", backend=self.name, interval_seconds=interval_seconds)
            while not self._stop_event.wait(interval_seconds):
                with self._lock:
                    self._tick_count += 1
                    self._last_tick = datetime.now(UTC)
                try:
                    tick_callback()
                except Exception:
                    logger.exception("scheduler.tick_failed", backend=self.name)
            logger.info("scheduler.stopped", backend=self.name)

        self._thread = threading.Thread(target=_loop, daemon=True, name="batch-scheduler")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        """Stop the scheduler loop, waiting up to 5 seconds for the current tick."""
        if not self._started:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning("scheduler.stop_timeout", backend=self.name)
        self._started = False

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        )

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick

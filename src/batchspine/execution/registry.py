"""Job Registry — injectable name → job lookup.

Triggers (the CLI, the scheduler, any HTTP layer a caller adds) refer to
jobs by name.  The registry decouples defining jobs from launching them.

ARCHITECTURE
────────────
::

    JobRegistry
      ├── .register(job)      ─ store job under job.name
      ├── .get(name)          ─ lookup, NoSuchJobError if missing
      ├── .names()            ─ all registered names
      └── .unregister(name)   ─ remove

Tags:
    batch, registry, lookup
"""

from __future__ import annotations

from collections.abc import Iterator

from batchspine.core.errors import ConfigError, NoSuchJobError
from batchspine.execution.job import Job


class JobRegistry:
    """Injectable job registry.

    Example:
        >>> registry = JobRegistry()
        >>> registry.register(order_process_job(conn))
        >>> registry.get("orderProcessJob").name
        'orderProcessJob'
    """

    def __init__(self, jobs: list[Job] | None = None):
        self._jobs: dict[str, Job] = {}
        for job in jobs or []:
            self.register(job)

    def register(self, job: Job, replace: bool = False) -> Job:
        """Register a job under its name.

        Raises:
            ConfigError: a different job already uses the name and ``replace`` is False
        """
        existing = self._jobs.get(job.name)
        if existing is not None and existing is not job and not replace:
            raise ConfigError(f"Job already registered: {job.name}")
        self._jobs[job.name] = job
        return job

    def get(self, name: str) -> Job:
        if name not in self._jobs:
            raise NoSuchJobError(name, self.names())
        return self._jobs[name]

    def has(self, name: str) -> bool:
        return name in self._jobs

    def names(self) -> list[str]:
        return sorted(self._jobs)

    def unregister(self, name: str) -> bool:
        return self._jobs.pop(name, None) is not None

    def __iter__(self) -> Iterator[Job]:
        return iter(self._jobs[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

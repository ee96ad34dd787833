"""Job launcher — validate, register and run job executions.

``run`` executes on the calling thread and returns the finished
JobExecution; ``start`` creates the execution synchronously (so
duplicate and concurrent-run rejections are raised to the caller right
away) and runs it on a worker thread.  ``stop`` asks a running execution
to finish its in-flight chunk and end STOPPED.

Example:
    >>> launcher = JobLauncher(SqliteJobRepository.connect())
    >>> execution = launcher.run(job, JobParameters.from_dict({"minAmount": 7000}))
    >>> execution.status
    <BatchStatus.COMPLETED: 'COMPLETED'>
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor

from batchspine.core.config import get_settings
from batchspine.core.logging import get_logger
from batchspine.execution.job import Job
from batchspine.execution.models import JobExecution
from batchspine.execution.parameters import EMPTY_PARAMETERS, JobParameters, RunIdIncrementer
from batchspine.repository.base import JobRepository

logger = get_logger(__name__)


class JobLauncher:
    """Creates job executions in the repository and runs them."""

    def __init__(self, repository: JobRepository, max_workers: int | None = None):
        self.repository = repository
        self._max_workers = max_workers or get_settings().max_workers
        self._pool: ThreadPoolExecutor | None = None
        self._stop_events: dict[int, threading.Event] = {}
        self._lock = threading.Lock()

    # ── Launch ───────────────────────────────────────────────────

    def run(self, job: Job, params: JobParameters | None = None) -> JobExecution:
        """Run ``job`` to completion on the calling thread.

        Raises:
            InvalidJobParametersError: parameters failed the job's validator
            JobInstanceAlreadyCompleteError: the instance already COMPLETED
            JobExecutionAlreadyRunningError: an execution of the instance is running
            JobRestartError: the job is not restartable and the instance exists
        """
        execution, stop_event = self._prepare(job, params)
        return self._execute(job, execution, stop_event)

    def start(self, job: Job, params: JobParameters | None = None) -> Future[JobExecution]:
        """Create the execution now and run it on a worker thread.

        Raises the same rejections as :meth:`run`, before any thread starts.
        """
        execution, stop_event = self._prepare(job, params)
        return self._get_pool().submit(self._execute, job, execution, stop_event)

    def _prepare(self, job: Job, params: JobParameters | None) -> tuple[JobExecution, threading.Event]:
        params = params if params is not None else EMPTY_PARAMETERS
        job.validate(params)
        execution = self.repository.create_execution(job.name, params, restartable=job.restartable)
        stop_event = threading.Event()
        with self._lock:
            self._stop_events[execution.id] = stop_event
        logger.info(
            "job.launched",
            job=job.name,
            execution_id=execution.id,
            instance_id=execution.instance_id,
        )
        return execution, stop_event

    def _execute(self, job: Job, execution: JobExecution, stop_event: threading.Event) -> JobExecution:
        try:
            return job.execute(execution, self.repository, stop_event)
        finally:
            with self._lock:
                self._stop_events.pop(execution.id, None)

    def _get_pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="batch-job",
                )
            return self._pool

    # ── Control ──────────────────────────────────────────────────

    def stop(self, execution_id: int) -> bool:
        """Request a cooperative stop; False if the execution is not running here."""
        with self._lock:
            event = self._stop_events.get(execution_id)
        if event is None:
            return False
        event.set()
        logger.info("job.stop_requested", execution_id=execution_id)
        return True

    def running_execution_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._stop_events)

    def next_parameters(self, job: Job, base: JobParameters | None = None) -> JobParameters:
        """Parameters for a fresh instance of ``job`` via its incrementer."""
        incrementer = job.incrementer or RunIdIncrementer()
        last = self.repository.get_last_instance(job.name)
        return incrementer.get_next(last.parameters if last else None, base)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; with ``wait`` block until running jobs finish."""
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=wait)

    def __enter__(self) -> JobLauncher:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

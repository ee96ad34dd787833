"""Run repository contract.

The repository is the single source of truth for job instances, job
executions, step executions and the skip log.  Two implementations share
this contract:

- :class:`~batchspine.repository.memory.InMemoryJobRepository` for tests
  and throwaway runs,
- :class:`~batchspine.repository.sqlite.SqliteJobRepository` for durable
  bookkeeping that survives restarts.

The run-identity rules live here so both implementations enforce them
the same way inside their own critical section.
"""

from __future__ import annotations

import contextlib
from abc import ABC, abstractmethod
from collections.abc import Iterator

from batchspine.core.errors import (
    JobExecutionAlreadyRunningError,
    JobInstanceAlreadyCompleteError,
    JobRestartError,
)
from batchspine.execution.models import (
    BatchStatus,
    JobExecution,
    JobInstance,
    SkipRecord,
    StepExecution,
)
from batchspine.execution.parameters import JobParameters


class JobRepository(ABC):
    """Durable bookkeeping of job instances and their executions."""

    # ── Instances ────────────────────────────────────────────────

    @abstractmethod
    def find_instance(self, job_name: str, params: JobParameters) -> JobInstance | None:
        """Instance for the identifying subset of ``params``, if any."""

    @abstractmethod
    def get_instance(self, instance_id: int) -> JobInstance | None: ...

    @abstractmethod
    def list_instances(self, job_name: str | None = None, limit: int = 100) -> list[JobInstance]:
        """Instances, newest first."""

    def get_last_instance(self, job_name: str) -> JobInstance | None:
        instances = self.list_instances(job_name, limit=1)
        return instances[0] if instances else None

    # ── Executions ───────────────────────────────────────────────

    @abstractmethod
    def create_execution(
        self,
        job_name: str,
        params: JobParameters,
        restartable: bool = True,
    ) -> JobExecution:
        """Atomically create a STARTING execution for (job_name, params).

        Raises:
            JobExecutionAlreadyRunningError: an execution of the instance is running
            JobInstanceAlreadyCompleteError: the instance already COMPLETED
            JobRestartError: the instance exists and ``restartable`` is False
        """

    @abstractmethod
    def update_execution(self, execution: JobExecution) -> None:
        """Persist status, times, exit description and failures."""

    @abstractmethod
    def get_execution(self, execution_id: int) -> JobExecution | None:
        """Execution with its step executions, or None."""

    @abstractmethod
    def get_executions(self, instance_id: int) -> list[JobExecution]:
        """All executions of an instance, oldest first."""

    @abstractmethod
    def list_executions(
        self,
        job_name: str | None = None,
        status: BatchStatus | None = None,
        limit: int = 100,
    ) -> list[JobExecution]:
        """Executions, newest first."""

    def get_last_execution(self, instance_id: int) -> JobExecution | None:
        executions = self.get_executions(instance_id)
        return executions[-1] if executions else None

    def get_running_executions(self, job_name: str) -> list[JobExecution]:
        return [
            e
            for status in (BatchStatus.STARTING, BatchStatus.STARTED)
            for e in self.list_executions(job_name, status=status, limit=1000)
        ]

    def mark_abandoned(self, execution_id: int) -> JobExecution:
        """Give up on an execution so its instance may be restarted.

        Raises:
            KeyError: no such execution
            InvalidTransitionError: the execution already COMPLETED or ABANDONED
        """
        execution = self.get_execution(execution_id)
        if execution is None:
            raise KeyError(f"No job execution with id {execution_id}")
        execution.transition_to(BatchStatus.ABANDONED)
        execution.exit_description = execution.exit_description or "Abandoned by operator"
        self.update_execution(execution)
        return execution

    # ── Steps ────────────────────────────────────────────────────

    @abstractmethod
    def add_step_execution(self, job_execution: JobExecution, step_name: str) -> StepExecution:
        """Create a READY step execution and append it to ``job_execution``."""

    @abstractmethod
    def update_step_execution(self, step_execution: StepExecution) -> None:
        """Persist status, counters, execution context and times."""

    @abstractmethod
    def get_last_step_execution(self, instance_id: int, step_name: str) -> StepExecution | None:
        """Most recent step execution of ``step_name`` across the instance's executions."""

    # ── Skip log ─────────────────────────────────────────────────

    @abstractmethod
    def record_skip(self, record: SkipRecord) -> SkipRecord: ...

    @abstractmethod
    def get_skips(self, step_execution_id: int) -> list[SkipRecord]: ...

    # ── Transactions ─────────────────────────────────────────────

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Group repository writes into one atomic unit.

        The base implementation has nothing to roll back.
        """
        yield

    # ── Shared rules ─────────────────────────────────────────────

    @staticmethod
    def _check_can_start(
        instance: JobInstance,
        executions: list[JobExecution],
        restartable: bool,
    ) -> None:
        """Enforce run identity for a new execution of an existing instance."""
        for execution in executions:
            if execution.is_running:
                raise JobExecutionAlreadyRunningError(instance.job_name, execution.id)
        for execution in executions:
            if execution.status == BatchStatus.COMPLETED:
                raise JobInstanceAlreadyCompleteError(instance.job_name, instance.instance_key)
        if executions and not restartable:
            raise JobRestartError(
                f"Job {instance.job_name} is not restartable and instance {instance.id} "
                "already has executions"
            )

"""Jobs and chunk-oriented steps.

Manifesto:
    A job is an ordered list of steps and nothing more: step N runs only
    when step N-1 completed.  Restarting a failed instance skips what is
    already done and picks the failed step up at its last checkpoint.

ARCHITECTURE
────────────
::

    Job("orderProcessJob", steps=[...], validator=..., incrementer=...)
      └── execute(job_execution, repository, stop_event)
            for step in steps:
              last run of step COMPLETED?  → skip (unless allow_start_if_complete)
              last run FAILED/STOPPED?     → resume with its execution_context
              ChunkStep.execute(...)       → COMPLETED | FAILED | STOPPED
            job status = first non-COMPLETED step status, else COMPLETED

    ChunkStep(source, transform, sink, chunk_size, fault_policy, ...)
      source/transform/sink may be scoped(factory): built once per job
      execution from its frozen JobParameters.

Tags:
    batch, job, step, restart, parameter-scope

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from batchspine.core.config import get_settings
from batchspine.core.errors import ConfigError, StepFailedError
from batchspine.core.logging import LogContext, get_logger
from batchspine.execution.chunk import ChunkExecutor
from batchspine.execution.fault_policy import FaultPolicy, FaultTracker
from batchspine.execution.listeners import JobListener, StepListener, notify
from batchspine.execution.models import BatchStatus, JobExecution, StepExecution, StepStatus
from batchspine.execution.parameters import (
    JobParameters,
    JobParametersValidator,
    RunIdIncrementer,
)
from batchspine.execution.transaction import TransactionManager
from batchspine.io.sinks import ItemSink
from batchspine.io.sources import ItemSource
from batchspine.io.transforms import ItemTransform, as_transform
from batchspine.repository.base import JobRepository

logger = get_logger(__name__)

T = TypeVar("T")


class ParameterScoped(Generic[T]):
    """A component built from the job parameters of each execution."""

    def __init__(self, factory: Callable[[JobParameters], T]):
        self.factory = factory

    def resolve(self, params: JobParameters) -> T:
        return self.factory(params)

    def __repr__(self) -> str:
        return f"scoped({getattr(self.factory, '__name__', self.factory)!r})"


def scoped(factory: Callable[[JobParameters], T]) -> ParameterScoped[T]:
    """Defer building a component until a job execution supplies parameters.

    Example:
        >>> source = scoped(lambda p: SqlQuerySource(
        ...     conn, "SELECT * FROM orders WHERE amount >= ?", (p.get_long("minAmount", 0),)
        ... ))
    """
    return ParameterScoped(factory)


def resolve(component: Any, params: JobParameters) -> Any:
    return component.resolve(params) if isinstance(component, ParameterScoped) else component


@dataclass
class ChunkStep:
    """A step that reads, transforms and writes items in chunks.

    ``chunk_size`` defaults to ``BATCH_DEFAULT_CHUNK_SIZE``.  When no
    ``transaction_manager`` is given the sink's own default is used.
    """

    name: str
    source: ItemSource | ParameterScoped[ItemSource]
    transform: ItemTransform | Callable[[Any], Any] | ParameterScoped[Any] | None
    sink: ItemSink | ParameterScoped[ItemSink]
    chunk_size: int | None = None
    fault_policy: FaultPolicy = field(default_factory=FaultPolicy)
    transaction_manager: TransactionManager | None = None
    allow_start_if_complete: bool = False
    listeners: Sequence[StepListener] = ()

    def __post_init__(self) -> None:
        if self.chunk_size is None:
            self.chunk_size = get_settings().default_chunk_size
        if self.chunk_size < 1:
            raise ConfigError(f"Step {self.name}: chunk_size must be >= 1, got {self.chunk_size}")

    def execute(
        self,
        job_execution: JobExecution,
        repository: JobRepository,
        stop_event: threading.Event,
        resume_context: dict[str, Any] | None = None,
    ) -> StepExecution:
        """Run this step once inside ``job_execution``.

        Never raises for step failures: the returned StepExecution is
        FAILED and the error is recorded on ``job_execution``.
        """
        step_execution = repository.add_step_execution(job_execution, self.name)
        step_execution.execution_context = dict(resume_context or {})

        with LogContext(step=self.name, step_execution_id=step_execution.id):
            if stop_event.is_set():
                step_execution.transition_to(StepStatus.STOPPED)
                step_execution.exit_description = "Stopped before start"
                repository.update_step_execution(step_execution)
                return step_execution

            step_execution.transition_to(StepStatus.RUNNING)
            repository.update_step_execution(step_execution)
            notify(self.listeners, "before_step", step_execution)
            logger.info("step.started", resumed=bool(resume_context))

            source = sink = None
            try:
                params = job_execution.parameters
                source = resolve(self.source, params)
                sink = resolve(self.sink, params)
                transform = as_transform(resolve(self.transform, params))
                transaction_manager = self.transaction_manager or sink.default_transaction_manager()

                source.open(step_execution.execution_context)
                sink.open(step_execution.execution_context)

                executor = ChunkExecutor(
                    step_execution=step_execution,
                    source=source,
                    transform=transform,
                    sink=sink,
                    chunk_size=self.chunk_size,
                    tracker=FaultTracker(self.fault_policy),
                    repository=repository,
                    transaction_manager=transaction_manager,
                    listeners=self.listeners,
                    stop_event=stop_event,
                )
                status = executor.execute()
                step_execution.transition_to(status)
                if status == StepStatus.STOPPED:
                    step_execution.exit_description = "Stopped by request"
            except Exception as e:
                step_execution.transition_to(StepStatus.FAILED)
                step_execution.exit_description = f"{type(e).__name__}: {e}"
                job_execution.add_failure(e)
                logger.error("step.failed", error=type(e).__name__, message=str(e))
            finally:
                for component in (source, sink):
                    if component is not None:
                        try:
                            component.close()
                        except Exception:
                            logger.exception("step.close_failed", component=type(component).__name__)

            repository.update_step_execution(step_execution)
            notify(self.listeners, "after_step", step_execution)
            logger.info(
                "step.finished",
                status=step_execution.status.value,
                read=step_execution.read_count,
                written=step_execution.write_count,
                skipped=step_execution.skip_count,
                filtered=step_execution.filter_count,
                commits=step_execution.commit_count,
            )
        return step_execution


@dataclass
class Job:
    """A named, strictly linear sequence of steps.

    Example:
        >>> job = Job("csvToDbJob", steps=[ChunkStep("csvToDbStep", source, None, sink, chunk_size=10)])
        >>> execution = JobLauncher(repository).run(job, params)
    """

    name: str
    steps: Sequence[ChunkStep]
    validator: JobParametersValidator | None = None
    incrementer: RunIdIncrementer | None = None
    restartable: bool = True
    listeners: Sequence[JobListener] = ()
    description: str = ""

    def __post_init__(self) -> None:
        if not self.steps:
            raise ConfigError(f"Job {self.name} has no steps")
        names = [s.name for s in self.steps]
        if len(set(names)) != len(names):
            raise ConfigError(f"Job {self.name} has duplicate step names: {names}")

    def validate(self, params: JobParameters) -> None:
        if self.validator is not None:
            self.validator.validate(params)

    def execute(
        self,
        job_execution: JobExecution,
        repository: JobRepository,
        stop_event: threading.Event | None = None,
    ) -> JobExecution:
        """Run the steps of ``job_execution`` and record the final status."""
        stop_event = stop_event or threading.Event()

        with LogContext(job=self.name, execution_id=job_execution.id):
            job_execution.transition_to(BatchStatus.STARTED)
            repository.update_execution(job_execution)
            notify(self.listeners, "before_job", job_execution)
            logger.info("job.started", params=job_execution.parameters.to_plain())

            final = BatchStatus.COMPLETED
            try:
                final = self._run_steps(job_execution, repository, stop_event)
            except Exception as e:
                final = BatchStatus.FAILED
                job_execution.add_failure(e)
                logger.exception("job.error", error=type(e).__name__)

            job_execution.transition_to(final)
            if final != BatchStatus.COMPLETED and job_execution.exit_description is None:
                job_execution.exit_description = (
                    job_execution.failures[0]["message"] if job_execution.failures else final.value
                )
            repository.update_execution(job_execution)
            notify(self.listeners, "after_job", job_execution)

            log = logger.info if final == BatchStatus.COMPLETED else logger.warning
            log(
                f"job.{final.value.lower()}",
                skips=job_execution.skip_count,
                steps=len(job_execution.step_executions),
            )
        return job_execution

    def _run_steps(
        self,
        job_execution: JobExecution,
        repository: JobRepository,
        stop_event: threading.Event,
    ) -> BatchStatus:
        for step in self.steps:
            if stop_event.is_set():
                job_execution.exit_description = f"Stopped before step {step.name}"
                return BatchStatus.STOPPED

            last = repository.get_last_step_execution(job_execution.instance_id, step.name)
            if last is not None and last.status == StepStatus.COMPLETED and not step.allow_start_if_complete:
                logger.info("step.already_complete", step=step.name, step_execution_id=last.id)
                continue

            resume_context = None
            if last is not None and last.status in (StepStatus.FAILED, StepStatus.STOPPED, StepStatus.RUNNING):
                resume_context = last.execution_context

            step_execution = step.execute(job_execution, repository, stop_event, resume_context)
            if step_execution.status == StepStatus.FAILED:
                if not job_execution.failures:
                    job_execution.add_failure(StepFailedError(step.name))
                job_execution.exit_description = f"Step {step.name} failed: {step_execution.exit_description}"
                return BatchStatus.FAILED
            if step_execution.status == StepStatus.STOPPED:
                job_execution.exit_description = f"Stopped in step {step.name}"
                return BatchStatus.STOPPED
        return BatchStatus.COMPLETED


__all__ = ["Job", "ChunkStep", "ParameterScoped", "scoped", "resolve"]

"""Job trigger — launch by name and report the outcome as plain data.

The trigger is what an outer surface (CLI, scheduler, an HTTP handler)
calls.  It never hands internal objects back and never swallows a
rejection: duplicate, concurrent and invalid launches come back as a
:class:`RunReport` with a ``REJECTED_*`` outcome and the error details.

Outcomes::

    CLEAN                 COMPLETED, no skips
    COMPLETED_WITH_SKIPS  COMPLETED, at least one item skipped
    FAILED                a step failed fatally
    STOPPED               stopped on request
    REJECTED_DUPLICATE    instance already COMPLETED (or not restartable)
    REJECTED_RUNNING      instance already has a running execution
    REJECTED_INVALID      parameters failed validation

Example:
    >>> trigger = JobTrigger(launcher, registry)
    >>> report = trigger.fire("orderProcessJob", {"date": "2025-01-01"}, unique=True)
    >>> report.outcome
    <Outcome.CLEAN: 'CLEAN'>
"""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from concurrent.futures import Future
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from batchspine.core.errors import (
    InvalidJobParametersError,
    JobExecutionAlreadyRunningError,
    JobInstanceAlreadyCompleteError,
    JobRestartError,
    describe_error,
)
from batchspine.core.logging import get_logger
from batchspine.execution.launcher import JobLauncher
from batchspine.execution.models import BatchStatus, JobExecution, StepExecution
from batchspine.execution.parameters import JobParameter, JobParameters, ParameterType
from batchspine.execution.registry import JobRegistry

logger = get_logger(__name__)

UNIQUE_PARAMETER = "run.timestamp"

_stamp_lock = threading.Lock()
_last_stamp = 0


def _next_stamp() -> int:
    """Epoch millis, strictly increasing within the process."""
    global _last_stamp
    with _stamp_lock:
        _last_stamp = max(int(time.time() * 1000), _last_stamp + 1)
        return _last_stamp


class Outcome(str, Enum):
    CLEAN = "CLEAN"
    COMPLETED_WITH_SKIPS = "COMPLETED_WITH_SKIPS"
    FAILED = "FAILED"
    STOPPED = "STOPPED"
    REJECTED_DUPLICATE = "REJECTED_DUPLICATE"
    REJECTED_RUNNING = "REJECTED_RUNNING"
    REJECTED_INVALID = "REJECTED_INVALID"

    @property
    def is_rejection(self) -> bool:
        return self.value.startswith("REJECTED")


_REJECTIONS: tuple[tuple[type[Exception], Outcome], ...] = (
    (JobInstanceAlreadyCompleteError, Outcome.REJECTED_DUPLICATE),
    (JobRestartError, Outcome.REJECTED_DUPLICATE),
    (JobExecutionAlreadyRunningError, Outcome.REJECTED_RUNNING),
    (InvalidJobParametersError, Outcome.REJECTED_INVALID),
)
_REJECTION_TYPES = tuple(kind for kind, _ in _REJECTIONS)


@dataclass
class StepReport:
    name: str
    status: str
    read_count: int
    write_count: int
    skip_count: int
    filter_count: int
    commit_count: int
    rollback_count: int
    exit_description: str | None = None

    @classmethod
    def from_step(cls, step: StepExecution) -> StepReport:
        return cls(
            name=step.step_name,
            status=step.status.value,
            read_count=step.read_count,
            write_count=step.write_count,
            skip_count=step.skip_count,
            filter_count=step.filter_count,
            commit_count=step.commit_count,
            rollback_count=step.rollback_count,
            exit_description=step.exit_description,
        )


@dataclass
class RunReport:
    """What a caller learns about one launch."""

    job_name: str
    outcome: Outcome
    status: str | None = None
    execution_id: int | None = None
    instance_id: int | None = None
    parameters: dict[str, str] = field(default_factory=dict)
    steps: list[StepReport] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome in (Outcome.CLEAN, Outcome.COMPLETED_WITH_SKIPS)

    @property
    def read_count(self) -> int:
        return sum(s.read_count for s in self.steps)

    @property
    def write_count(self) -> int:
        return sum(s.write_count for s in self.steps)

    @property
    def skip_count(self) -> int:
        return sum(s.skip_count for s in self.steps)

    @classmethod
    def from_execution(cls, execution: JobExecution) -> RunReport:
        skips = execution.skip_count
        if execution.status == BatchStatus.COMPLETED:
            outcome = Outcome.COMPLETED_WITH_SKIPS if skips else Outcome.CLEAN
        elif execution.status == BatchStatus.STOPPED:
            outcome = Outcome.STOPPED
        else:
            outcome = Outcome.FAILED
        return cls(
            job_name=execution.job_name,
            outcome=outcome,
            status=execution.status.value,
            execution_id=execution.id,
            instance_id=execution.instance_id,
            parameters=execution.parameters.to_plain(),
            steps=[StepReport.from_step(s) for s in execution.step_executions],
            errors=list(execution.failures),
        )

    @classmethod
    def rejected(cls, job_name: str, params: JobParameters, error: Exception) -> RunReport:
        outcome = next(o for kind, o in _REJECTIONS if isinstance(error, kind))
        return cls(
            job_name=job_name,
            outcome=outcome,
            parameters=params.to_plain(),
            errors=[describe_error(error)],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_name": self.job_name,
            "outcome": self.outcome.value,
            "status": self.status,
            "execution_id": self.execution_id,
            "instance_id": self.instance_id,
            "parameters": dict(self.parameters),
            "read_count": self.read_count,
            "write_count": self.write_count,
            "skip_count": self.skip_count,
            "steps": [asdict(s) for s in self.steps],
            "errors": list(self.errors),
        }


class JobTrigger:
    """Launch registered jobs by name."""

    def __init__(self, launcher: JobLauncher, registry: JobRegistry):
        self.launcher = launcher
        self.registry = registry

    def build_parameters(
        self,
        params: JobParameters | Mapping[str, Any] | None = None,
        unique: bool = False,
    ) -> JobParameters:
        """Coerce ``params``; ``unique`` adds ``run.timestamp`` (epoch millis)."""
        if params is None:
            result = JobParameters()
        elif isinstance(params, JobParameters):
            result = params
        else:
            result = JobParameters.from_dict(params)
        if unique:
            stamp = JobParameter(_next_stamp(), ParameterType.LONG)
            result = result.merged({UNIQUE_PARAMETER: stamp})
        return result

    def fire(
        self,
        job_name: str,
        params: JobParameters | Mapping[str, Any] | None = None,
        unique: bool = False,
    ) -> RunReport:
        """Run ``job_name`` synchronously and report.

        Raises:
            NoSuchJobError: no job registered under ``job_name``
        """
        job = self.registry.get(job_name)
        job_params = self.build_parameters(params, unique)
        try:
            execution = self.launcher.run(job, job_params)
        except _REJECTION_TYPES as e:
            logger.warning("trigger.rejected", job=job_name, error=type(e).__name__, message=str(e))
            return RunReport.rejected(job_name, job_params, e)
        report = RunReport.from_execution(execution)
        logger.info("trigger.finished", job=job_name, outcome=report.outcome.value)
        return report

    def submit(
        self,
        job_name: str,
        params: JobParameters | Mapping[str, Any] | None = None,
        unique: bool = False,
    ) -> Future[RunReport]:
        """Like :meth:`fire` but runs the job on a launcher worker thread."""
        job = self.registry.get(job_name)
        job_params = self.build_parameters(params, unique)
        result: Future[RunReport] = Future()
        try:
            execution_future = self.launcher.start(job, job_params)
        except _REJECTION_TYPES as e:
            logger.warning("trigger.rejected", job=job_name, error=type(e).__name__, message=str(e))
            result.set_result(RunReport.rejected(job_name, job_params, e))
            return result

        def _done(future: Future[JobExecution]) -> None:
            error = future.exception()
            if error is not None:
                result.set_exception(error)
            else:
                result.set_result(RunReport.from_execution(future.result()))

        execution_future.add_done_callback(_done)
        return result


__all__ = ["Outcome", "StepReport", "RunReport", "JobTrigger", "UNIQUE_PARAMETER"]

"""Batch execution domain models.

Defines the records the run repository stores and the engine mutates:
- JobInstance: A job name plus one identifying parameter set
- JobExecution: One attempt to run a JobInstance
- StepExecution: One attempt to run a step inside a JobExecution
- SkipRecord: One skipped item, kept in the skip log

These models are used by the repositories, the chunk executor and the
launcher.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from batchspine.core.errors import InvalidTransitionError, describe_error
from batchspine.execution.parameters import JobParameters


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class BatchStatus(str, Enum):
    """Status of a job execution.

    Valid transition graph::

        STARTING → STARTED | FAILED | STOPPED | ABANDONED
        STARTED  → COMPLETED | FAILED | STOPPED | ABANDONED
        FAILED   → ABANDONED
        STOPPED  → ABANDONED
        COMPLETED → (terminal)
        ABANDONED → (terminal)

    ``STARTED → ABANDONED`` exists for executions whose process died while
    running; the operator abandons them so the instance can be restarted.
    """

    STARTING = "STARTING"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"
    ABANDONED = "ABANDONED"

    @property
    def is_running(self) -> bool:
        return self in (BatchStatus.STARTING, BatchStatus.STARTED)

    @property
    def is_terminal(self) -> bool:
        return not self.is_running


BATCH_VALID_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.STARTING: frozenset({
        BatchStatus.STARTED,
        BatchStatus.FAILED,
        BatchStatus.STOPPED,
        BatchStatus.ABANDONED,
    }),
    BatchStatus.STARTED: frozenset({
        BatchStatus.COMPLETED,
        BatchStatus.FAILED,
        BatchStatus.STOPPED,
        BatchStatus.ABANDONED,
    }),
    BatchStatus.FAILED: frozenset({BatchStatus.ABANDONED}),
    BatchStatus.STOPPED: frozenset({BatchStatus.ABANDONED}),
    BatchStatus.COMPLETED: frozenset(),  # terminal
    BatchStatus.ABANDONED: frozenset(),  # terminal
}


def validate_batch_transition(current: BatchStatus, target: BatchStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_batch_transition(BatchStatus.STARTED, BatchStatus.COMPLETED)
        >>> validate_batch_transition(BatchStatus.COMPLETED, BatchStatus.STARTED)
        InvalidTransitionError: Invalid BatchStatus transition: COMPLETED → STARTED
    """
    if target not in BATCH_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value, "BatchStatus")


class StepStatus(str, Enum):
    """Status of a step execution.

    Valid transition graph::

        READY   → RUNNING | STOPPED
        RUNNING → COMPLETED | FAILED | STOPPED
        COMPLETED / FAILED / STOPPED → (terminal)
    """

    READY = "READY"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"


STEP_VALID_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.READY: frozenset({StepStatus.RUNNING, StepStatus.STOPPED}),
    StepStatus.RUNNING: frozenset({
        StepStatus.COMPLETED,
        StepStatus.FAILED,
        StepStatus.STOPPED,
    }),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
    StepStatus.STOPPED: frozenset(),
}


def validate_step_transition(current: StepStatus, target: StepStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in STEP_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value, "StepStatus")


@dataclass
class JobInstance:
    """A logical run: job name plus identifying parameters.

    ``instance_key`` is the hash from :meth:`JobParameters.instance_key`
    and is unique per job name.
    """

    id: int
    job_name: str
    instance_key: str
    parameters: JobParameters
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_name": self.job_name,
            "instance_key": self.instance_key,
            "parameters": self.parameters.to_plain(),
            "created_at": _iso(self.created_at),
        }


COUNTER_FIELDS = (
    "read_count",
    "write_count",
    "filter_count",
    "skip_count",
    "read_skip_count",
    "process_skip_count",
    "retry_count",
    "commit_count",
    "rollback_count",
)


@dataclass
class StepExecution:
    """One attempt to run a step within a job execution.

    Counters only ever reflect committed chunks (plus ``rollback_count``),
    so ``read_count == write_count + skip_count + filter_count`` holds
    after every commit.

    ``execution_context`` is the restart checkpoint.  It must stay
    JSON-serialisable; sources store their cursor position under their
    own key.

    Example:
        >>> step = StepExecution(id=1, job_execution_id=1, step_name="orderProcessStep")
        >>> step.transition_to(StepStatus.RUNNING)
        >>> step.read_count += 5
    """

    id: int
    job_execution_id: int
    step_name: str
    status: StepStatus = StepStatus.READY

    read_count: int = 0
    write_count: int = 0
    filter_count: int = 0
    skip_count: int = 0
    read_skip_count: int = 0
    process_skip_count: int = 0
    retry_count: int = 0
    commit_count: int = 0
    rollback_count: int = 0

    execution_context: dict[str, Any] = field(default_factory=dict)
    start_time: datetime | None = None
    end_time: datetime | None = None
    exit_description: str | None = None

    def transition_to(self, target: StepStatus) -> None:
        validate_step_transition(self.status, target)
        self.status = target
        if target == StepStatus.RUNNING:
            self.start_time = utcnow()
        elif target in (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.STOPPED):
            self.end_time = utcnow()

    def counters(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in COUNTER_FIELDS}

    def restore_counters(self, snapshot: dict[str, int]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "job_execution_id": self.job_execution_id,
            "step_name": self.step_name,
            "status": self.status.value,
            **self.counters(),
            "execution_context": dict(self.execution_context),
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "exit_description": self.exit_description,
        }


@dataclass
class JobExecution:
    """One attempt to run a job instance.

    Example:
        >>> execution = repository.create_execution("orderProcessJob", params)
        >>> execution.status
        <BatchStatus.STARTING: 'STARTING'>
    """

    id: int
    instance_id: int
    job_name: str
    parameters: JobParameters
    status: BatchStatus = BatchStatus.STARTING
    create_time: datetime = field(default_factory=utcnow)
    start_time: datetime | None = None
    end_time: datetime | None = None
    step_executions: list[StepExecution] = field(default_factory=list)
    exit_description: str | None = None
    failures: list[dict[str, Any]] = field(default_factory=list)
    # live exceptions of this process; only ``failures`` is persisted
    failure_exceptions: list[BaseException] = field(default_factory=list, repr=False, compare=False)

    def add_failure(self, error: BaseException) -> None:
        self.failures.append(describe_error(error))
        self.failure_exceptions.append(error)

    def transition_to(self, target: BatchStatus) -> None:
        validate_batch_transition(self.status, target)
        self.status = target
        if target == BatchStatus.STARTED:
            self.start_time = utcnow()
        elif target.is_terminal and self.end_time is None:
            self.end_time = utcnow()

    @property
    def is_running(self) -> bool:
        return self.status.is_running

    def step(self, name: str) -> StepExecution | None:
        """Latest step execution with ``name`` in this job execution."""
        for step in reversed(self.step_executions):
            if step.step_name == name:
                return step
        return None

    @property
    def skip_count(self) -> int:
        return sum(s.skip_count for s in self.step_executions)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "job_name": self.job_name,
            "parameters": self.parameters.to_plain(),
            "status": self.status.value,
            "create_time": _iso(self.create_time),
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "exit_description": self.exit_description,
            "failures": list(self.failures),
            "steps": [s.to_dict() for s in self.step_executions],
        }


@dataclass
class SkipRecord:
    """An item dropped by the fault policy, kept for inspection.

    Skip records are append-only and belong to the chunk that produced
    them: a rolled-back chunk leaves none behind.
    """

    step_execution_id: int
    job_execution_id: int
    phase: str  # "read" or "process"
    item_repr: str | None
    error_type: str
    error_message: str
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    @classmethod
    def create(
        cls,
        step_execution: StepExecution,
        phase: str,
        item: Any,
        error: BaseException,
    ) -> SkipRecord:
        return cls(
            step_execution_id=step_execution.id,
            job_execution_id=step_execution.job_execution_id,
            phase=phase,
            item_repr=None if item is None else repr(item)[:1000],
            error_type=type(error).__name__,
            error_message=str(error),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "step_execution_id": self.step_execution_id,
            "job_execution_id": self.job_execution_id,
            "phase": self.phase,
            "item": self.item_repr,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "created_at": _iso(self.created_at),
        }

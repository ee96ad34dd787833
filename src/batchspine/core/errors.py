"""
Structured error types for the batch engine.

Provides the typed error hierarchy used by every layer of batch-spine: item
sources and sinks raise ``ResourceError`` when they cannot be opened, the
chunk executor wraps per-item and per-chunk failures in ``ItemError`` /
``ChunkError`` once the fault policy has declared them fatal, and the run
repository raises the duplicate/concurrent run errors that guard job
instance identity.

Manifesto:
    - **Typed Error Hierarchy:** Different error types for different failure points
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry job, step and execution ids for logging
    - **Error Chaining:** The original item/sink exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         BatchError                               │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ResourceError      ItemError          ChunkError               │
        │  (RESOURCE)         (ITEM, item,phase) (CHUNK, size)            │
        │                                                                  │
        │  JobInstanceAlreadyCompleteError   JobExecutionAlreadyRunning   │
        │  (DUPLICATE_RUN)                   (CONCURRENT_RUN)             │
        │                                                                  │
        │  JobRestartError   InvalidJobParametersError   NoSuchJobError   │
        │  (RESTART)         (VALIDATION)                (CONFIG)         │
        │                                                                  │
        │  InvalidTransitionError   StepFailedError   ConfigError         │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ResourceError("users.csv not found")
    >>> error.category
    <ErrorCategory.RESOURCE: 'RESOURCE'>
    >>> error.with_context(job="csvToDbJob", step="csvToDbStep").context.step
    'csvToDbStep'

Tags:
    error-handling, exception-hierarchy, batch, fault-tolerance
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and reporting.

    Categories group errors by where they came from so that the run report
    and the logs can tell "the input file is missing" apart from "one
    record was bad" and "the same run was already done".
    """

    # Infrastructure
    RESOURCE = "RESOURCE"              # Source/sink could not be opened
    DATABASE = "DATABASE"              # Repository or sink store failure

    # Data
    ITEM = "ITEM"                      # Single item read/process failure
    CHUNK = "CHUNK"                    # Batch write failure
    VALIDATION = "VALIDATION"          # Bad job parameters

    # Run identity
    DUPLICATE_RUN = "DUPLICATE_RUN"    # Instance already COMPLETED
    CONCURRENT_RUN = "CONCURRENT_RUN"  # Instance already STARTED
    RESTART = "RESTART"                # Instance cannot be restarted

    # Application
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields for the identifiers the engine always knows when an error
    happens; anything else goes into ``metadata``.

    Attributes:
        job: Job name
        step: Step name
        job_execution_id: Id of the failing JobExecution
        step_execution_id: Id of the failing StepExecution
        instance_id: Id of the JobInstance
        metadata: Additional key-value pairs
    """

    job: str | None = None
    step: str | None = None
    job_execution_id: int | None = None
    step_execution_id: int | None = None
    instance_id: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job", "step", "job_execution_id", "step_execution_id", "instance_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class BatchError(Exception):
    """
    Base exception for all batch engine errors.

    All BatchError instances carry:
    - **category:** ErrorCategory for classification
    - **retryable:** Whether re-running the same operation may succeed
    - **context:** ErrorContext with job/step identifiers
    - **cause:** Optional underlying exception for chaining

    Subclasses set ``default_category`` and ``default_retryable``.

    Examples:
        >>> error = BatchError("Something went wrong")
        >>> error.retryable
        False
        >>> error.to_dict()["error_type"]
        'BatchError'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BatchError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ResourceError("Cannot open").with_context(step="csvToDbStep")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# RESOURCE ERRORS
# =============================================================================


class ResourceError(BatchError):
    """
    A source or sink could not be opened.

    Always fatal: the step never starts reading, and the job execution is
    marked FAILED.
    """

    default_category = ErrorCategory.RESOURCE
    default_retryable = False


class RepositoryError(BatchError):
    """The run repository could not read or write its records."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


# =============================================================================
# ITEM / CHUNK ERRORS
# =============================================================================


class ItemError(BatchError):
    """
    A single item failed during read or process and the fault policy
    declared the failure fatal.

    The original exception is kept as ``cause`` so that callers see the
    real error kind, and the offending item travels with the error.
    """

    default_category = ErrorCategory.ITEM
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        item: Any = None,
        phase: str = "process",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.item = item
        self.phase = phase

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["phase"] = self.phase
        if self.item is not None:
            result["item"] = repr(self.item)
        return result


class ChunkError(BatchError):
    """A batch sink write failed and could not be recovered."""

    default_category = ErrorCategory.CHUNK
    default_retryable = False

    def __init__(self, message: str, *, size: int = 0, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.size = size

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["size"] = self.size
        return result


class StepFailedError(BatchError):
    """A step ended FAILED; raised by the job to stop the linear chain."""

    default_category = ErrorCategory.INTERNAL

    def __init__(self, step_name: str, message: str | None = None, **kwargs: Any):
        self.step_name = step_name
        super().__init__(message or f"Step failed: {step_name}", **kwargs)


# =============================================================================
# RUN IDENTITY ERRORS
# =============================================================================


class JobInstanceAlreadyCompleteError(BatchError):
    """
    The job instance for these parameters already reached COMPLETED.

    A completed instance is never executed again with identical
    parameters; add a uniquifying parameter to request a fresh run.
    """

    default_category = ErrorCategory.DUPLICATE_RUN

    def __init__(self, job_name: str, instance_key: str, message: str | None = None):
        self.job_name = job_name
        self.instance_key = instance_key
        super().__init__(
            message
            or f"Job instance already completed: {job_name} ({instance_key[:12]}). "
            "Change the parameters to run again."
        )


class JobExecutionAlreadyRunningError(BatchError):
    """An execution of the same job instance is already STARTED."""

    default_category = ErrorCategory.CONCURRENT_RUN

    def __init__(self, job_name: str, execution_id: int, message: str | None = None):
        self.job_name = job_name
        self.execution_id = execution_id
        super().__init__(
            message or f"Job execution already running for {job_name}: execution {execution_id}"
        )


class JobRestartError(BatchError):
    """The job instance exists but the job does not allow restarts."""

    default_category = ErrorCategory.RESTART


DuplicateRunError = JobInstanceAlreadyCompleteError
ConcurrentRunError = JobExecutionAlreadyRunningError


# =============================================================================
# CONFIGURATION / VALIDATION ERRORS
# =============================================================================


class ConfigError(BatchError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG


class NoSuchJobError(ConfigError):
    """Job not found in registry."""

    def __init__(self, name: str, available: list[str] | None = None):
        self.job_name = name
        hint = f" Available jobs: {', '.join(available)}" if available else ""
        super().__init__(f"Job not found: {name}.{hint}")


class InvalidJobParametersError(BatchError):
    """Job parameters failed validation before the run was created."""

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        missing_params: list[str] | None = None,
        invalid_params: dict[str, str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.missing_params = missing_params or []
        self.invalid_params = invalid_params or {}

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.missing_params:
            result["missing_params"] = self.missing_params
        if self.invalid_params:
            result["invalid_params"] = self.invalid_params
        return result


class InvalidTransitionError(BatchError, ValueError):
    """
    Raised when an illegal status transition is attempted
    (e.g. COMPLETED → STARTED).
    """

    default_category = ErrorCategory.INTERNAL

    def __init__(self, current: str, target: str, enum_name: str = "Status") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {enum_name} transition: {current} → {target}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def root_cause(error: BaseException) -> BaseException:
    """Return the innermost ``cause`` of a BatchError chain."""
    while isinstance(error, BatchError) and error.cause is not None:
        error = error.cause
    return error


def describe_error(error: BaseException) -> dict[str, Any]:
    """Plain-data description of any exception for reports and logs."""
    if isinstance(error, BatchError):
        return error.to_dict()
    return {
        "error_type": type(error).__name__,
        "message": str(error),
        "category": ErrorCategory.UNKNOWN.value,
        "retryable": False,
    }


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "BatchError",
    "ResourceError",
    "RepositoryError",
    "ItemError",
    "ChunkError",
    "StepFailedError",
    "JobInstanceAlreadyCompleteError",
    "JobExecutionAlreadyRunningError",
    "JobRestartError",
    "DuplicateRunError",
    "ConcurrentRunError",
    "ConfigError",
    "NoSuchJobError",
    "InvalidJobParametersError",
    "InvalidTransitionError",
    "root_cause",
    "describe_error",
]

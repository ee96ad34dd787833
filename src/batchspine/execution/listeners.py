"""Lifecycle hooks for jobs and steps.

Subclass and override the hooks you need; every hook defaults to a no-op.
Listener errors are logged and never change the outcome of the step or
job they observe.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from batchspine.core.logging import get_logger

if TYPE_CHECKING:
    from batchspine.execution.models import JobExecution, StepExecution

logger = get_logger(__name__)


class StepListener:
    """Hooks around a step and each of its chunks."""

    def before_step(self, step_execution: StepExecution) -> None:
        pass

    def after_step(self, step_execution: StepExecution) -> None:
        pass

    def before_chunk(self, step_execution: StepExecution) -> None:
        pass

    def after_chunk(self, step_execution: StepExecution) -> None:
        pass

    def after_chunk_error(self, step_execution: StepExecution, error: BaseException) -> None:
        pass

    def on_skip(self, step_execution: StepExecution, phase: str, item: Any, error: BaseException) -> None:
        pass


class JobListener:
    """Hooks around a whole job execution."""

    def before_job(self, job_execution: JobExecution) -> None:
        pass

    def after_job(self, job_execution: JobExecution) -> None:
        pass


def notify(listeners: Sequence[Any], hook: str, *args: Any) -> None:
    """Call ``hook`` on every listener, logging (not raising) failures."""
    for listener in listeners:
        try:
            getattr(listener, hook)(*args)
        except Exception:
            logger.exception("listener.failed", listener=type(listener).__name__, hook=hook)


__all__ = ["StepListener", "JobListener", "notify"]

"""Tests for execution models — status transitions, counters, failures."""

from __future__ import annotations

import pytest

from batchspine.core.errors import InvalidTransitionError, ResourceError
from batchspine.execution.models import (
    BatchStatus,
    JobExecution,
    SkipRecord,
    StepExecution,
    StepStatus,
    validate_batch_transition,
    validate_step_transition,
)
from batchspine.execution.parameters import JobParameters


def _execution(**kwargs) -> JobExecution:
    defaults = {"id": 1, "instance_id": 1, "job_name": "orderProcessJob", "parameters": JobParameters()}
    defaults.update(kwargs)
    return JobExecution(**defaults)


class TestBatchStatus:
    @pytest.mark.parametrize(
        "current,target",
        [
            (BatchStatus.STARTING, BatchStatus.STARTED),
            (BatchStatus.STARTED, BatchStatus.COMPLETED),
            (BatchStatus.STARTED, BatchStatus.FAILED),
            (BatchStatus.STARTED, BatchStatus.STOPPED),
            (BatchStatus.STARTED, BatchStatus.ABANDONED),
            (BatchStatus.FAILED, BatchStatus.ABANDONED),
            (BatchStatus.STOPPED, BatchStatus.ABANDONED),
        ],
    )
    def test_valid_transitions(self, current, target):
        validate_batch_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (BatchStatus.COMPLETED, BatchStatus.STARTED),
            (BatchStatus.COMPLETED, BatchStatus.ABANDONED),
            (BatchStatus.ABANDONED, BatchStatus.STARTED),
            (BatchStatus.FAILED, BatchStatus.STARTED),
            (BatchStatus.STARTING, BatchStatus.COMPLETED),
        ],
    )
    def test_invalid_transitions(self, current, target):
        with pytest.raises(InvalidTransitionError):
            validate_batch_transition(current, target)

    def test_running_flags(self):
        assert BatchStatus.STARTING.is_running
        assert BatchStatus.STARTED.is_running
        assert BatchStatus.FAILED.is_terminal
        assert not BatchStatus.COMPLETED.is_running


class TestStepStatus:
    def test_ready_to_running_to_completed(self):
        step = StepExecution(id=1, job_execution_id=1, step_name="s")
        step.transition_to(StepStatus.RUNNING)
        assert step.start_time is not None
        step.transition_to(StepStatus.COMPLETED)
        assert step.end_time is not None

    def test_completed_is_terminal(self):
        with pytest.raises(InvalidTransitionError):
            validate_step_transition(StepStatus.COMPLETED, StepStatus.RUNNING)

    def test_ready_cannot_complete(self):
        with pytest.raises(InvalidTransitionError):
            validate_step_transition(StepStatus.READY, StepStatus.COMPLETED)


class TestStepExecution:
    def test_counters_snapshot_and_restore(self):
        step = StepExecution(id=1, job_execution_id=1, step_name="s")
        snapshot = step.counters()
        step.read_count = 5
        step.write_count = 4
        step.restore_counters(snapshot)
        assert step.read_count == 0
        assert step.write_count == 0

    def test_to_dict(self):
        step = StepExecution(id=3, job_execution_id=1, step_name="s", execution_context={"a.position": 2})
        data = step.to_dict()
        assert data["status"] == "READY"
        assert data["execution_context"] == {"a.position": 2}
        assert data["rollback_count"] == 0


class TestJobExecution:
    def test_transition_sets_times(self):
        execution = _execution()
        execution.transition_to(BatchStatus.STARTED)
        assert execution.start_time is not None
        execution.transition_to(BatchStatus.COMPLETED)
        assert execution.end_time is not None

    def test_add_failure_keeps_plain_data_and_exception(self):
        execution = _execution()
        error = ResourceError("Cannot open users.csv")
        execution.add_failure(error)
        assert execution.failures[0]["error_type"] == "ResourceError"
        assert execution.failure_exceptions == [error]

    def test_add_failure_plain_exception(self):
        execution = _execution()
        execution.add_failure(KeyError("x"))
        assert execution.failures[0]["error_type"] == "KeyError"

    def test_step_lookup_and_skip_count(self):
        execution = _execution()
        first = StepExecution(id=1, job_execution_id=1, step_name="a", skip_count=2)
        second = StepExecution(id=2, job_execution_id=1, step_name="b", skip_count=1)
        execution.step_executions.extend([first, second])
        assert execution.step("b") is second
        assert execution.step("missing") is None
        assert execution.skip_count == 3


class TestSkipRecord:
    def test_create_from_error(self):
        step = StepExecution(id=4, job_execution_id=2, step_name="s")
        record = SkipRecord.create(step, "process", {"id": 9}, ValueError("negative amount"))
        assert record.step_execution_id == 4
        assert record.job_execution_id == 2
        assert record.error_type == "ValueError"
        assert record.item_repr == "{'id': 9}"

    def test_read_skip_has_no_item(self):
        step = StepExecution(id=4, job_execution_id=2, step_name="s")
        record = SkipRecord.create(step, "read", None, ValueError("bad line"))
        assert record.item_repr is None
        assert record.to_dict()["phase"] == "read"

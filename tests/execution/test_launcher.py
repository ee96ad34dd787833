"""Tests for JobLauncher — background runs, stop, run identity."""

from __future__ import annotations

import pytest

from batchspine.core.errors import (
    InvalidJobParametersError,
    JobExecutionAlreadyRunningError,
    JobInstanceAlreadyCompleteError,
)
from batchspine.execution.models import BatchStatus, StepStatus
from batchspine.execution.parameters import (
    JobParameters,
    JobParametersValidator,
    ParamDef,
    ParameterType,
)
from tests._support.jobs import simple_job

PARAMS = JobParameters.from_dict({"date": "2025-01-01"})


def _wait_for_write(sink):
    assert sink.entered.wait(timeout=5), "job never reached the sink"


class TestStart:
    def test_start_returns_future(self, launcher):
        future = launcher.start(simple_job(), PARAMS)
        execution = future.result(timeout=10)
        assert execution.status == BatchStatus.COMPLETED

    def test_concurrent_launch_rejected(self, launcher, blocking_sink):
        job = simple_job(sink=blocking_sink)
        future = launcher.start(job, PARAMS)
        _wait_for_write(blocking_sink)

        with pytest.raises(JobExecutionAlreadyRunningError):
            launcher.start(job, PARAMS)

        blocking_sink.release.set()
        assert future.result(timeout=10).status == BatchStatus.COMPLETED

    def test_running_execution_recorded(self, launcher, repository, blocking_sink):
        job = simple_job(sink=blocking_sink)
        future = launcher.start(job, PARAMS)
        _wait_for_write(blocking_sink)

        running = repository.get_running_executions(job.name)
        assert [e.id for e in running] == launcher.running_execution_ids()

        blocking_sink.release.set()
        future.result(timeout=10)
        assert repository.get_running_executions(job.name) == []
        assert launcher.running_execution_ids() == []

    def test_rejections_raised_before_thread_starts(self, launcher):
        job = simple_job()
        launcher.run(job, PARAMS)
        with pytest.raises(JobInstanceAlreadyCompleteError):
            launcher.start(job, PARAMS)

    def test_invalid_parameters_create_nothing(self, launcher, repository):
        validator = JobParametersValidator(required=[ParamDef("date", ParameterType.DATE)])
        job = simple_job(validator=validator)
        with pytest.raises(InvalidJobParametersError) as exc_info:
            launcher.run(job, JobParameters())
        assert exc_info.value.missing_params == ["date"]
        assert repository.list_instances(job.name) == []


class TestStop:
    def test_stop_finishes_chunk_then_stops(self, launcher, blocking_sink):
        job = simple_job(sink=blocking_sink, chunk_size=3)
        future = launcher.start(job, PARAMS)
        _wait_for_write(blocking_sink)

        [execution_id] = launcher.running_execution_ids()
        assert launcher.stop(execution_id) is True
        blocking_sink.release.set()

        execution = future.result(timeout=10)
        assert execution.status == BatchStatus.STOPPED
        step = execution.step_executions[0]
        assert step.status == StepStatus.STOPPED
        assert step.commit_count == 1
        assert blocking_sink.items == [1, 2, 3]

    def test_stopped_execution_restarts_where_it_stopped(self, launcher, blocking_sink):
        job = simple_job(sink=blocking_sink, chunk_size=3)
        future = launcher.start(job, PARAMS)
        _wait_for_write(blocking_sink)
        launcher.stop(launcher.running_execution_ids()[0])
        blocking_sink.release.set()
        stopped = future.result(timeout=10)

        resumed = launcher.run(job, PARAMS)
        assert resumed.status == BatchStatus.COMPLETED
        assert resumed.instance_id == stopped.instance_id
        assert resumed.step_executions[0].read_count == 7
        assert blocking_sink.items == list(range(1, 11))

    def test_stop_unknown_execution(self, launcher):
        assert launcher.stop(9999) is False


class TestNextParameters:
    def test_first_run_id(self, launcher):
        params = launcher.next_parameters(simple_job())
        assert params.get_long("run.id") == 1

    def test_increments_after_run(self, launcher):
        job = simple_job()
        first = launcher.next_parameters(job)
        launcher.run(job, first)

        second = launcher.next_parameters(job)
        assert second.get_long("run.id") == 2
        assert launcher.run(job, second).status == BatchStatus.COMPLETED

    def test_base_parameters_override_previous(self, launcher):
        job = simple_job()
        launcher.run(job, launcher.next_parameters(job, JobParameters.from_dict({"region": "eu"})))

        params = launcher.next_parameters(job, JobParameters.from_dict({"region": "us"}))
        assert params["region"] == "us"
        assert params.get_long("run.id") == 2

"""In-memory run repository.

Keeps every record in dictionaries guarded by one lock.  Records are
copied on the way in and out so callers never share mutable state with
the store, which makes it behave like the sqlite repository in tests.
"""

from __future__ import annotations

import copy
import dataclasses
import threading

from batchspine.core.logging import get_logger
from batchspine.execution.models import (
    BatchStatus,
    JobExecution,
    JobInstance,
    SkipRecord,
    StepExecution,
    utcnow,
)
from batchspine.execution.parameters import JobParameters
from batchspine.repository.base import JobRepository

logger = get_logger(__name__)


def _copy_step(step: StepExecution) -> StepExecution:
    return dataclasses.replace(step, execution_context=copy.deepcopy(step.execution_context))


def _copy_execution(execution: JobExecution) -> JobExecution:
    # JobParameters is immutable and exceptions are not persisted
    return dataclasses.replace(
        execution,
        step_executions=[],
        failures=copy.deepcopy(execution.failures),
        failure_exceptions=[],
    )


class InMemoryJobRepository(JobRepository):
    """Process-local repository; nothing survives the interpreter."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._instances: dict[int, JobInstance] = {}
        self._instance_keys: dict[tuple[str, str], int] = {}
        self._executions: dict[int, JobExecution] = {}
        self._steps: dict[int, StepExecution] = {}
        self._skips: list[SkipRecord] = []
        self._next_id = {"instance": 1, "execution": 1, "step": 1, "skip": 1}

    def _allocate(self, kind: str) -> int:
        value = self._next_id[kind]
        self._next_id[kind] = value + 1
        return value

    # ── Instances ────────────────────────────────────────────────

    def find_instance(self, job_name: str, params: JobParameters) -> JobInstance | None:
        key = params.instance_key(job_name)
        with self._lock:
            instance_id = self._instance_keys.get((job_name, key))
            return dataclasses.replace(self._instances[instance_id]) if instance_id else None

    def get_instance(self, instance_id: int) -> JobInstance | None:
        with self._lock:
            instance = self._instances.get(instance_id)
            return dataclasses.replace(instance) if instance else None

    def list_instances(self, job_name: str | None = None, limit: int = 100) -> list[JobInstance]:
        with self._lock:
            instances = [
                i for i in self._instances.values() if job_name is None or i.job_name == job_name
            ]
            instances.sort(key=lambda i: i.id, reverse=True)
            return [dataclasses.replace(i) for i in instances[:limit]]

    # ── Executions ───────────────────────────────────────────────

    def create_execution(
        self,
        job_name: str,
        params: JobParameters,
        restartable: bool = True,
    ) -> JobExecution:
        key = params.instance_key(job_name)
        with self._lock:
            instance_id = self._instance_keys.get((job_name, key))
            if instance_id is None:
                instance = JobInstance(
                    id=self._allocate("instance"),
                    job_name=job_name,
                    instance_key=key,
                    parameters=params.identifying(),
                    created_at=utcnow(),
                )
                self._instances[instance.id] = instance
                self._instance_keys[(job_name, key)] = instance.id
                logger.debug("repository.instance_created", job=job_name, instance_id=instance.id)
            else:
                instance = self._instances[instance_id]
                self._check_can_start(instance, self._executions_of(instance.id), restartable)

            execution = JobExecution(
                id=self._allocate("execution"),
                instance_id=instance.id,
                job_name=job_name,
                parameters=params,
            )
            self._executions[execution.id] = _copy_execution(execution)
            return execution

    def _executions_of(self, instance_id: int) -> list[JobExecution]:
        return sorted(
            (e for e in self._executions.values() if e.instance_id == instance_id),
            key=lambda e: e.id,
        )

    def update_execution(self, execution: JobExecution) -> None:
        with self._lock:
            if execution.id not in self._executions:
                raise KeyError(f"No job execution with id {execution.id}")
            self._executions[execution.id] = _copy_execution(execution)

    def _hydrate(self, execution: JobExecution) -> JobExecution:
        result = _copy_execution(execution)
        result.step_executions = [
            _copy_step(s)
            for s in sorted(self._steps.values(), key=lambda s: s.id)
            if s.job_execution_id == execution.id
        ]
        return result

    def get_execution(self, execution_id: int) -> JobExecution | None:
        with self._lock:
            execution = self._executions.get(execution_id)
            return self._hydrate(execution) if execution else None

    def get_executions(self, instance_id: int) -> list[JobExecution]:
        with self._lock:
            return [self._hydrate(e) for e in self._executions_of(instance_id)]

    def list_executions(
        self,
        job_name: str | None = None,
        status: BatchStatus | None = None,
        limit: int = 100,
    ) -> list[JobExecution]:
        with self._lock:
            matches = [
                e
                for e in self._executions.values()
                if (job_name is None or e.job_name == job_name)
                and (status is None or e.status == status)
            ]
            matches.sort(key=lambda e: e.id, reverse=True)
            return [self._hydrate(e) for e in matches[:limit]]

    # ── Steps ────────────────────────────────────────────────────

    def add_step_execution(self, job_execution: JobExecution, step_name: str) -> StepExecution:
        with self._lock:
            step = StepExecution(
                id=self._allocate("step"),
                job_execution_id=job_execution.id,
                step_name=step_name,
            )
            self._steps[step.id] = _copy_step(step)
        job_execution.step_executions.append(step)
        return step

    def update_step_execution(self, step_execution: StepExecution) -> None:
        with self._lock:
            if step_execution.id not in self._steps:
                raise KeyError(f"No step execution with id {step_execution.id}")
            self._steps[step_execution.id] = _copy_step(step_execution)

    def get_last_step_execution(self, instance_id: int, step_name: str) -> StepExecution | None:
        with self._lock:
            execution_ids = {e.id for e in self._executions_of(instance_id)}
            candidates = [
                s
                for s in self._steps.values()
                if s.job_execution_id in execution_ids and s.step_name == step_name
            ]
            if not candidates:
                return None
            return _copy_step(max(candidates, key=lambda s: s.id))

    # ── Skip log ─────────────────────────────────────────────────

    def record_skip(self, record: SkipRecord) -> SkipRecord:
        with self._lock:
            record.id = self._allocate("skip")
            self._skips.append(dataclasses.replace(record))
        return record

    def get_skips(self, step_execution_id: int) -> list[SkipRecord]:
        with self._lock:
            return [dataclasses.replace(r) for r in self._skips if r.step_execution_id == step_execution_id]

"""
batch-spine -- chunk-oriented batch jobs with restart and fault tolerance.

Usage:
    from batchspine import ChunkStep, Job, JobLauncher, SqliteJobRepository
    from batchspine.io import CsvSource, ListSink

    repository = SqliteJobRepository.connect("batch.db")
    job = Job("importJob", steps=[ChunkStep("importStep", CsvSource("in.csv"), None, ListSink())])
    execution = JobLauncher(repository).run(job)
"""

__version__ = "0.1.0"

from batchspine.execution.fault_policy import FaultPolicy
from batchspine.execution.job import ChunkStep, Job, scoped
from batchspine.execution.launcher import JobLauncher
from batchspine.execution.listeners import JobListener, StepListener
from batchspine.execution.models import (
    BatchStatus,
    JobExecution,
    JobInstance,
    SkipRecord,
    StepExecution,
    StepStatus,
)
from batchspine.execution.parameters import (
    JobParameter,
    JobParameters,
    JobParametersBuilder,
    JobParametersValidator,
    ParamDef,
    ParameterType,
    RunIdIncrementer,
)
from batchspine.execution.registry import JobRegistry
from batchspine.execution.trigger import JobTrigger, Outcome, RunReport
from batchspine.repository import InMemoryJobRepository, JobRepository, SqliteJobRepository
from batchspine.scheduling import OverlapPolicy, ScheduledTrigger, rolling_window

__all__ = [
    "__version__",
    "FaultPolicy",
    "ChunkStep",
    "Job",
    "scoped",
    "JobLauncher",
    "JobListener",
    "StepListener",
    "BatchStatus",
    "JobExecution",
    "JobInstance",
    "SkipRecord",
    "StepExecution",
    "StepStatus",
    "JobParameter",
    "JobParameters",
    "JobParametersBuilder",
    "JobParametersValidator",
    "ParamDef",
    "ParameterType",
    "RunIdIncrementer",
    "JobRegistry",
    "JobTrigger",
    "Outcome",
    "RunReport",
    "InMemoryJobRepository",
    "JobRepository",
    "SqliteJobRepository",
    "OverlapPolicy",
    "ScheduledTrigger",
    "rolling_window",
]

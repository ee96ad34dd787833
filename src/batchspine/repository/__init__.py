"""Run repositories: durable bookkeeping of job instances and executions."""

from batchspine.repository.base import JobRepository
from batchspine.repository.memory import InMemoryJobRepository
from batchspine.repository.sqlite import SqliteJobRepository

__all__ = ["JobRepository", "InMemoryJobRepository", "SqliteJobRepository"]

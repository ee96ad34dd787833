"""
Shared pytest fixtures for batch-spine tests.

This module provides:
- In-memory sqlite and in-memory run repositories
- A launcher that is shut down after each test
- Settings isolation (throwaway database path, fresh settings cache)

Usage:
    Fixtures are auto-discovered by pytest.  Helpers for building jobs live
    in ``tests._support.jobs``.
"""

import logging
import sys
from pathlib import Path

import pytest

# Ensure batchspine and tests._support are importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent))

from batchspine.core.config import clear_settings_cache
from batchspine.execution.launcher import JobLauncher
from batchspine.repository.memory import InMemoryJobRepository
from batchspine.repository.sqlite import SqliteJobRepository
from tests._support.jobs import BlockingSink


# =============================================================================
# Settings isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch, tmp_path):
    """Every test gets default settings and a throwaway database path."""
    for name in ("BATCH_DEFAULT_CHUNK_SIZE", "BATCH_DEFAULT_SKIP_LIMIT", "BATCH_DEFAULT_RETRY_LIMIT", "BATCH_JOBS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BATCH_DATABASE_PATH", str(tmp_path / "batch.db"))
    clear_settings_cache()
    yield
    clear_settings_cache()
    # CLI runs point the root handler at a stream that is closed afterwards
    logging.getLogger().handlers.clear()


# =============================================================================
# Repositories
# =============================================================================


@pytest.fixture()
def sqlite_repository():
    repository = SqliteJobRepository.connect(":memory:")
    yield repository
    repository.close()


@pytest.fixture()
def memory_repository():
    return InMemoryJobRepository()


@pytest.fixture(params=["memory", "sqlite"])
def repository(request):
    """Runs the test against both repository implementations."""
    if request.param == "memory":
        yield InMemoryJobRepository()
    else:
        repository = SqliteJobRepository.connect(":memory:")
        yield repository
        repository.close()


@pytest.fixture()
def launcher(repository):
    launcher = JobLauncher(repository, max_workers=4)
    yield launcher
    launcher.shutdown(wait=True)


@pytest.fixture()
def blocking_sink():
    sink = BlockingSink()
    yield sink
    sink.release.set()

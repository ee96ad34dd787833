"""Tests for JobRegistry."""

import pytest

from batchspine.core.errors import ConfigError, NoSuchJobError
from batchspine.execution.registry import JobRegistry
from tests._support.jobs import simple_job


def test_register_and_get():
    job = simple_job("alphaJob")
    registry = JobRegistry([job])
    assert registry.get("alphaJob") is job
    assert "alphaJob" in registry
    assert len(registry) == 1


def test_names_sorted():
    registry = JobRegistry([simple_job("b"), simple_job("a")])
    assert registry.names() == ["a", "b"]
    assert [job.name for job in registry] == ["a", "b"]


def test_missing_job_lists_available():
    registry = JobRegistry([simple_job("alphaJob")])
    with pytest.raises(NoSuchJobError, match="alphaJob"):
        registry.get("betaJob")


def test_duplicate_name_rejected_unless_replace():
    registry = JobRegistry([simple_job("alphaJob")])
    replacement = simple_job("alphaJob")
    with pytest.raises(ConfigError):
        registry.register(replacement)
    registry.register(replacement, replace=True)
    assert registry.get("alphaJob") is replacement


def test_unregister():
    registry = JobRegistry([simple_job("alphaJob")])
    assert registry.unregister("alphaJob") is True
    assert registry.unregister("alphaJob") is False
    assert not registry.has("alphaJob")

"""Tests for FaultPolicy classification and FaultTracker budgets."""

from __future__ import annotations

import pytest

from batchspine.execution.fault_policy import FaultDecision, FaultPolicy, FaultTracker
from batchspine.execution.retry import ConstantBackoff, ExponentialBackoff, LinearBackoff, NoBackoff


class TransientError(Exception):
    pass


class TestFaultPolicy:
    def test_defaults_are_fail_fast(self):
        policy = FaultPolicy()
        assert not policy.is_skippable(ValueError())
        assert not policy.is_retryable(ValueError())
        assert FaultPolicy.fail_fast() == policy

    def test_subclasses_match(self):
        policy = FaultPolicy(skippable=(LookupError,), skip_limit=1)
        assert policy.is_skippable(KeyError("k"))

    def test_exclusions_win(self):
        policy = FaultPolicy(skippable=(Exception,), no_skip=(KeyError,), skip_limit=5)
        assert policy.is_skippable(ValueError())
        assert not policy.is_skippable(KeyError("k"))

    def test_single_class_is_accepted(self):
        policy = FaultPolicy(retryable=TransientError, retry_limit=1)
        assert policy.is_retryable(TransientError())

    def test_negative_limits_rejected(self):
        with pytest.raises(ValueError):
            FaultPolicy(skip_limit=-1)

    def test_from_settings_uses_defaults(self, monkeypatch):
        from batchspine.core.config import clear_settings_cache

        monkeypatch.setenv("BATCH_DEFAULT_SKIP_LIMIT", "4")
        clear_settings_cache()
        policy = FaultPolicy.from_settings(skippable=[ValueError])
        assert policy.skip_limit == 4
        assert policy.retry_limit == 0


class TestFaultTracker:
    def test_retry_before_skip(self):
        tracker = FaultTracker(
            FaultPolicy(skippable=(TransientError,), retryable=(TransientError,), skip_limit=1, retry_limit=2)
        )
        assert tracker.decide(TransientError(), attempt=1) == FaultDecision.RETRY
        assert tracker.decide(TransientError(), attempt=2) == FaultDecision.SKIP
        assert tracker.decide(TransientError(), attempt=2) == FaultDecision.FATAL

    def test_retry_limit_counts_first_attempt(self):
        tracker = FaultTracker(FaultPolicy(retryable=(TransientError,), retry_limit=3))
        assert tracker.decide(TransientError(), attempt=1) == FaultDecision.RETRY
        assert tracker.decide(TransientError(), attempt=2) == FaultDecision.RETRY
        assert tracker.decide(TransientError(), attempt=3) == FaultDecision.FATAL
        assert tracker.retries_used == 2

    def test_retry_limit_of_one_never_retries(self):
        tracker = FaultTracker(FaultPolicy(retryable=(TransientError,), retry_limit=1))
        assert tracker.decide(TransientError(), attempt=1) == FaultDecision.FATAL

    def test_retry_limit_applies_per_item(self):
        tracker = FaultTracker(FaultPolicy(retryable=(TransientError,), retry_limit=2))
        assert tracker.decide(TransientError(), attempt=1) == FaultDecision.RETRY
        assert tracker.decide(TransientError(), attempt=2) == FaultDecision.FATAL
        # a fresh item starts again at its first attempt
        assert tracker.decide(TransientError(), attempt=1) == FaultDecision.RETRY
        assert tracker.retries_used == 2

    def test_skip_budget_is_shared(self):
        tracker = FaultTracker(FaultPolicy(skippable=(ValueError,), skip_limit=2))
        assert tracker.decide(ValueError()) == FaultDecision.SKIP
        assert tracker.decide(ValueError()) == FaultDecision.SKIP
        assert tracker.decide(ValueError()) == FaultDecision.FATAL
        assert tracker.skips_used == 2

    def test_read_errors_are_never_retried(self):
        tracker = FaultTracker(
            FaultPolicy(skippable=(ValueError,), retryable=(ValueError,), skip_limit=1, retry_limit=3)
        )
        assert tracker.decide(ValueError(), "read") == FaultDecision.SKIP
        assert tracker.retries_used == 0

    def test_write_errors_are_never_skipped(self):
        tracker = FaultTracker(FaultPolicy(skippable=(OSError,), skip_limit=5))
        assert tracker.decide(OSError(), "write") == FaultDecision.FATAL

    def test_non_retryable_component(self):
        tracker = FaultTracker(FaultPolicy(retryable=(ValueError,), retry_limit=3))
        assert tracker.decide(ValueError(), allow_retry=False) == FaultDecision.FATAL

    def test_unknown_phase(self):
        with pytest.raises(ValueError):
            FaultTracker(FaultPolicy()).decide(ValueError(), "flush")

    def test_snapshot_restore(self):
        tracker = FaultTracker(FaultPolicy(skippable=(ValueError,), skip_limit=3))
        snapshot = tracker.snapshot()
        tracker.decide(ValueError())
        tracker.restore(snapshot)
        assert tracker.skips_used == 0

    def test_backoff_delay_follows_strategy(self):
        policy = FaultPolicy(retryable=(ValueError,), retry_limit=3, backoff=ConstantBackoff(delay=0.5))
        tracker = FaultTracker(policy)
        assert tracker.decide(ValueError(), attempt=1) == FaultDecision.RETRY
        assert tracker.backoff_delay(1) == 0.5

    def test_backoff_delay_grows_with_attempt(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0, multiplier=2.0, jitter=False)
        tracker = FaultTracker(FaultPolicy(retryable=(ValueError,), retry_limit=4, backoff=backoff))
        assert [tracker.backoff_delay(attempt) for attempt in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestBackoff:
    def test_no_backoff(self):
        assert NoBackoff().next_delay(3) == 0

    def test_exponential_capped(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=5.0, multiplier=2.0, jitter=False)
        assert backoff.next_delay(0) == 1.0
        assert backoff.next_delay(1) == 2.0
        assert backoff.next_delay(10) == 5.0

    def test_linear(self):
        backoff = LinearBackoff(base_delay=1.0, increment=0.5, max_delay=10.0)
        assert backoff.next_delay(2) == 2.0

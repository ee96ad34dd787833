"""Fault policy: classify item and chunk errors as retry, skip or fatal.

Manifesto:
    A bad record should not sink a million-row run, and a transient hiccup
    should not be mistaken for a bad record.  Each step declares, once,
    which error kinds may be retried and which may be skipped, and how
    many of each it tolerates.  Everything else is fatal.

ARCHITECTURE
────────────
::

    FaultPolicy (frozen, per step)          FaultTracker (per StepExecution)
      skippable / no_skip                     skips_used
      retryable / no_retry          ──►       retries_used
      skip_limit / retry_limit                decide(error, phase, attempt)
      backoff                                   ─► RETRY │ SKIP │ FATAL

Decision order for one error:
    1. retryable and attempt < retry_limit       → RETRY
    2. skippable and skips_used < skip_limit     → SKIP
    3. otherwise                                 → FATAL

``attempt`` counts tries of the failing item (or chunk write) including
the first, so ``retry_limit=3`` means three attempts in total.  The skip
budget is shared by the whole step execution.

Phase rules:
    - ``read``: retry is not offered (the cursor already moved), so SKIP or FATAL.
    - ``process``: RETRY, SKIP or FATAL.
    - ``write``: RETRY (same buffer) or FATAL; whole chunks are never skipped.

Tags:
    batch, fault-tolerance, retry, skip, policy
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from batchspine.core.config import get_settings
from batchspine.execution.retry import BackoffStrategy, NoBackoff

ErrorKinds = tuple[type[BaseException], ...]

PHASES = ("read", "process", "write")


class FaultDecision(str, Enum):
    """Outcome of classifying one error."""

    RETRY = "RETRY"
    SKIP = "SKIP"
    FATAL = "FATAL"


def _as_kinds(name: str, value: Iterable[type[BaseException]] | type[BaseException]) -> ErrorKinds:
    kinds = (value,) if isinstance(value, type) else tuple(value)
    for kind in kinds:
        if not (isinstance(kind, type) and issubclass(kind, BaseException)):
            raise TypeError(f"{name} entries must be exception classes, got {kind!r}")
    return kinds


def _matches(error: BaseException, kinds: ErrorKinds) -> bool:
    return bool(kinds) and isinstance(error, kinds)


@dataclass(frozen=True)
class FaultPolicy:
    """Per-step fault tolerance configuration.

    Error kinds are exception classes; subclasses match.  ``no_skip`` and
    ``no_retry`` carve exceptions out of broader kinds and always win.
    ``retry_limit`` counts attempts of one item including the first, so
    with ``retry_limit=3`` an item is processed at most three times.
    ``skip_limit`` is a budget shared by the whole step execution.

    Example:
        >>> policy = FaultPolicy(
        ...     skippable=(ValueError,),
        ...     retryable=(TimeoutError,),
        ...     skip_limit=10,
        ...     retry_limit=3,
        ... )
        >>> policy.is_skippable(ValueError("bad amount"))
        True
    """

    skippable: ErrorKinds = ()
    retryable: ErrorKinds = ()
    skip_limit: int = 0
    retry_limit: int = 0
    no_skip: ErrorKinds = ()
    no_retry: ErrorKinds = ()
    backoff: BackoffStrategy = field(default_factory=NoBackoff)

    def __post_init__(self) -> None:
        for name in ("skippable", "retryable", "no_skip", "no_retry"):
            object.__setattr__(self, name, _as_kinds(name, getattr(self, name)))
        if self.skip_limit < 0 or self.retry_limit < 0:
            raise ValueError("skip_limit and retry_limit must be >= 0")

    @classmethod
    def fail_fast(cls) -> FaultPolicy:
        """Every error is fatal."""
        return cls()

    @classmethod
    def from_settings(
        cls,
        skippable: Iterable[type[BaseException]] = (),
        retryable: Iterable[type[BaseException]] = (),
        **overrides,
    ) -> FaultPolicy:
        """Build a policy whose limits default to ``BATCH_DEFAULT_*_LIMIT``."""
        settings = get_settings()
        overrides.setdefault("skip_limit", settings.default_skip_limit)
        overrides.setdefault("retry_limit", settings.default_retry_limit)
        return cls(skippable=tuple(skippable), retryable=tuple(retryable), **overrides)

    def is_skippable(self, error: BaseException) -> bool:
        return _matches(error, self.skippable) and not _matches(error, self.no_skip)

    def is_retryable(self, error: BaseException) -> bool:
        return _matches(error, self.retryable) and not _matches(error, self.no_retry)


class FaultTracker:
    """Budget bookkeeping for one step execution.

    Owned by a single chunk executor; not thread-safe.
    """

    def __init__(self, policy: FaultPolicy):
        self.policy = policy
        self.skips_used = 0
        self.retries_used = 0

    def decide(
        self,
        error: BaseException,
        phase: str = "process",
        allow_retry: bool = True,
        attempt: int = 1,
    ) -> FaultDecision:
        """Classify ``error`` and consume budget for RETRY/SKIP decisions.

        Args:
            error: The exception raised by the source, transform or sink
            phase: ``"read"``, ``"process"`` or ``"write"``
            allow_retry: False when the component opted out of retries
            attempt: Which try of the same item or chunk just failed, from 1
        """
        if phase not in PHASES:
            raise ValueError(f"Unknown phase: {phase}")

        if (
            allow_retry
            and phase != "read"
            and self.policy.is_retryable(error)
            and attempt < self.policy.retry_limit
        ):
            self.retries_used += 1
            return FaultDecision.RETRY

        if phase != "write" and self.policy.is_skippable(error) and self.skips_used < self.policy.skip_limit:
            self.skips_used += 1
            return FaultDecision.SKIP

        return FaultDecision.FATAL

    def backoff_delay(self, attempt: int = 1) -> float:
        """Delay before the try following failed ``attempt``."""
        return self.policy.backoff.next_delay(max(attempt - 1, 0))

    def snapshot(self) -> tuple[int, int]:
        return self.skips_used, self.retries_used

    def restore(self, snapshot: tuple[int, int]) -> None:
        self.skips_used, self.retries_used = snapshot


__all__ = ["FaultDecision", "FaultPolicy", "FaultTracker"]

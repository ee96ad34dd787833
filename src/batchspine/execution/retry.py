"""Backoff strategies applied between retry attempts.

The number of attempts is owned by :class:`~batchspine.execution.fault_policy.FaultPolicy`
(``retry_limit``); a strategy only answers "how long to wait before
re-attempt N".

Example:
    >>> from batchspine.execution.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(base_delay=0.5, max_delay=10.0, jitter=False)
    >>> [strategy.next_delay(attempt) for attempt in range(3)]
    [0.5, 1.0, 2.0]
"""

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass


class BackoffStrategy(ABC):
    """Abstract base for backoff strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before the next re-attempt.

        Args:
            attempt: Zero-based retry number (0 = first retry)

        Returns:
            Delay in seconds
        """
        ...


@dataclass(frozen=True)
class ExponentialBackoff(BackoffStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) + jitter

    Attributes:
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)
        return delay


@dataclass(frozen=True)
class LinearBackoff(BackoffStrategy):
    """Linear backoff strategy.

    Delay = base_delay + (increment * attempt)
    """

    base_delay: float = 1.0
    increment: float = 1.0
    max_delay: float = 30.0

    def next_delay(self, attempt: int) -> float:
        return min(self.base_delay + (self.increment * attempt), self.max_delay)


@dataclass(frozen=True)
class ConstantBackoff(BackoffStrategy):
    """Constant delay between retries."""

    delay: float = 1.0

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass(frozen=True)
class NoBackoff(BackoffStrategy):
    """Retry immediately."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

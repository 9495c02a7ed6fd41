"""Retry policy with exponential backoff and jitter.

Decides, for a failed attempt, whether another attempt should be made and
how long to wait first. The decision is a pure function of the attempt
index, the failure kind and the policy parameters; nothing is stored.

    delay = min(max_delay, initial_delay * backoff_multiplier ** (attempt - 1))
    delay += delay * jitter_fraction * random()

The cap is applied before jitter, so a capped delay can exceed ``max_delay``
by at most ``jitter_fraction``. Jitter is additive only, which keeps delays
non-negative and spreads out callers that failed at the same moment.

Example:
    >>> from relay.execution.retry import RetryPolicy
    >>> from relay.execution.models import FailureKind
    >>>
    >>> policy = RetryPolicy(max_retries=5, initial_delay=1.0, max_delay=4.0, jitter_fraction=0.0)
    >>> [policy.base_delay(attempt) for attempt in range(1, 5)]
    [1.0, 2.0, 4.0, 4.0]
    >>> policy.next_delay(5, FailureKind.RETRYABLE).retry
    False
"""

import random
from collections.abc import Callable
from dataclasses import dataclass, field

from relay.core.errors import ConfigError
from relay.execution.models import FailureKind


@dataclass(frozen=True)
class RetryDecision:
    """Whether to retry, and after how many seconds."""

    retry: bool
    delay: float = 0.0


NO_RETRY = RetryDecision(retry=False)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter.

    Attributes:
        max_retries: Attempt index at which retrying stops; a call makes at
            most this many attempts
        initial_delay: Delay in seconds after the first attempt
        max_delay: Cap in seconds on the pre-jitter delay
        backoff_multiplier: Exponential multiplier per attempt
        jitter_fraction: Extra random delay as a fraction of the delay (0.0-1.0)
        rng: Source of uniform [0, 1) values (injectable for tests)
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    backoff_multiplier: float = 2.0
    jitter_fraction: float = 0.25
    rng: Callable[[], float] = field(default=random.random, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ConfigError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.initial_delay < 0:
            raise ConfigError(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.max_delay < self.initial_delay:
            raise ConfigError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            )
        if self.backoff_multiplier < 1:
            raise ConfigError(f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}")
        if not 0.0 <= self.jitter_fraction <= 1.0:
            raise ConfigError(f"jitter_fraction must be within [0, 1], got {self.jitter_fraction}")

    def base_delay(self, attempt: int) -> float:
        """Pre-jitter delay after the given 1-based attempt."""
        exponent = max(0, attempt - 1)
        try:
            delay = self.initial_delay * (self.backoff_multiplier ** exponent)
        except OverflowError:
            return self.max_delay
        return min(self.max_delay, delay)

    def should_retry(self, attempt: int, kind: FailureKind) -> bool:
        """Check if another attempt may follow the given one."""
        if kind != FailureKind.RETRYABLE:
            return False
        return attempt < self.max_retries

    def next_delay(self, attempt: int, kind: FailureKind) -> RetryDecision:
        """Decide what happens after ``attempt`` failed with ``kind``."""
        if not self.should_retry(attempt, kind):
            return NO_RETRY

        delay = self.base_delay(attempt)
        if self.jitter_fraction:
            delay += delay * self.jitter_fraction * self.rng()
        return RetryDecision(retry=True, delay=max(0.0, delay))


class NoRetry(RetryPolicy):
    """Single attempt, never retry."""

    def __init__(self) -> None:
        super().__init__(max_retries=1, jitter_fraction=0.0)

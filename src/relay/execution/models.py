"""Outcome and attempt records for guarded calls.

A transport attempt ends in exactly one of three outcomes:

    Success(value)              the call worked
    RetryableFailure(reason)    may work if tried again (timeouts, 503s)
    PermanentFailure(reason)    retrying is futile (bad input, 404s)

``CallAttempt`` records one try; ``CallReport`` is the final disposition of
a logical call together with every attempt it made.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class FailureKind(str, Enum):
    """Kinds of failed outcome."""

    RETRYABLE = "retryable"
    PERMANENT = "permanent"


class AttemptStatus(str, Enum):
    """Lifecycle of a single attempt."""

    PENDING = "pending"
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful transport outcome."""

    value: T


@dataclass(frozen=True)
class RetryableFailure:
    """Transient failure; counted against the circuit breaker."""

    reason: str
    error: BaseException | None = field(default=None, compare=False)

    kind = FailureKind.RETRYABLE


@dataclass(frozen=True)
class PermanentFailure:
    """Failure that retrying cannot fix; never trips the circuit breaker."""

    reason: str
    error: BaseException | None = field(default=None, compare=False)

    kind = FailureKind.PERMANENT


Outcome = Success[Any] | RetryableFailure | PermanentFailure


def as_outcome(result: Any) -> Outcome:
    """Wrap a plain transport return value as ``Success``."""
    if isinstance(result, Success | RetryableFailure | PermanentFailure):
        return result
    return Success(result)


def status_for(outcome: Outcome) -> AttemptStatus:
    """Map an outcome to the attempt status it records."""
    if isinstance(outcome, Success):
        return AttemptStatus.SUCCESS
    if isinstance(outcome, RetryableFailure):
        return AttemptStatus.RETRYABLE_FAILURE
    return AttemptStatus.PERMANENT_FAILURE


@dataclass(frozen=True)
class CallAttempt:
    """One invocation try of a logical call.

    Created pending right before the transport is invoked; ``finish`` returns
    the settled copy. A settled attempt is never modified.

    Attributes:
        index: 1-based attempt number within the call
        started_at: Clock reading when the attempt started
        status: Pending until the outcome is recorded
        latency: Seconds the transport took, None while pending
        reason: Failure reason for failed attempts
    """

    index: int
    started_at: float
    status: AttemptStatus = AttemptStatus.PENDING
    latency: float | None = None
    reason: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == AttemptStatus.PENDING

    def finish(self, outcome: Outcome, ended_at: float) -> CallAttempt:
        """Record the outcome and return the settled attempt."""
        if not self.is_pending:
            raise ValueError(f"Attempt {self.index} already settled as {self.status.value}")
        return replace(
            self,
            status=status_for(outcome),
            latency=max(0.0, ended_at - self.started_at),
            reason=getattr(outcome, "reason", None),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "started_at": self.started_at,
            "status": self.status.value,
            "latency": self.latency,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class CallReport:
    """Final disposition of a logical call.

    Exactly one of ``value`` / ``error`` is meaningful: ``error`` is None on
    success.
    """

    value: Any = None
    error: Exception | None = None
    attempts: tuple[CallAttempt, ...] = ()
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def unwrap(self) -> Any:
        """Return the value or raise the terminal error."""
        if self.error is not None:
            raise self.error
        return self.value

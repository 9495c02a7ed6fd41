"""
Structured error types for relay.

Every terminal disposition of a guarded call, other than success, is one of
the errors defined here. They carry the same metadata the rest of relay uses
for retry decisions, logging and metrics:

- **Category:** What kind of error (transport, circuit, cancellation, ...)
- **Retryable:** Whether the failed operation could succeed if tried again
- **Retry-after:** Seconds to wait before another try, when known
- **Context:** Dependency name, request id, attempt number, custom fields
- **Cause:** Chained underlying exception for root cause analysis

Manifesto:
    - **One terminal error per call:** The orchestrator raises exactly one of
      these, never a bare transport exception
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Rich context:** Errors carry metadata for logging and alerting
    - **Error chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       RelayError                                │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  TransientError      PermanentCallError    ConfigError          │
        │  (retryable=True)    (TRANSPORT)           (CONFIG)             │
        │       │                                                         │
        │  RetryableCallError  CircuitOpenError      CancellationError    │
        │  RateLimitExceeded   (CIRCUIT)             (CANCELLATION)       │
        │                                                 │               │
        │                                           DeadlineExceeded      │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = RetryableCallError("upstream timeout", attempts=3)
    >>> error.retryable
    True
    >>> error.with_context(dependency="billing").context.dependency
    'billing'

Tags:
    error-handling, exception-hierarchy, retry-logic, relay

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    TRANSPORT = "TRANSPORT"        # Failure reported by the wrapped call
    CIRCUIT = "CIRCUIT"            # Rejected by an open circuit breaker
    RATE_LIMIT = "RATE_LIMIT"      # Admission deferred by the rate limiter
    CANCELLATION = "CANCELLATION"  # Caller cancelled or deadline elapsed
    CONFIG = "CONFIG"              # Invalid construction parameters
    INTERNAL = "INTERNAL"          # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        dependency: Name of the guarded dependency
        request_id: Caller-supplied identifier of the logical call
        attempt: Attempt index (1-based) the error relates to
        metadata: Additional key-value pairs
    """

    dependency: str | None = None
    request_id: str | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ("dependency", "request_id", "attempt"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RelayError(Exception):
    """Base exception for all relay errors.

    Subclasses set ``default_category`` and ``default_retryable`` to give
    sensible defaults for their kind of failure.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RelayError:
        """Add context to this error (fluent API).

        Usage:
            raise CircuitOpenError("billing").with_context(request_id="r-1")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(RelayError):
    """Temporary error that may succeed on retry.

    Transports may raise this (or a subclass) to signal a retryable failure
    instead of returning a ``RetryableFailure`` outcome.
    """

    default_category = ErrorCategory.TRANSPORT
    default_retryable = True


class RetryableCallError(TransientError):
    """The last retryable failure of a call whose retries were exhausted."""

    def __init__(self, reason: str, *, attempts: int, **kwargs: Any):
        super().__init__(reason, **kwargs)
        self.reason = reason
        self.attempts = attempts

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["attempts"] = self.attempts
        return result


class RateLimitExceeded(TransientError):
    """Raised by the non-waiting admission check when the window is full.

    The orchestrator never surfaces this; a full window makes it wait.
    """

    default_category = ErrorCategory.RATE_LIMIT

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float | None = None, **kwargs: Any):
        super().__init__(message, retry_after=retry_after, **kwargs)


# =============================================================================
# TERMINAL ERRORS (Never Retried)
# =============================================================================


class PermanentCallError(RelayError):
    """A failure that retrying cannot fix (e.g. a malformed request)."""

    default_category = ErrorCategory.TRANSPORT
    default_retryable = False

    def __init__(self, reason: str, *, attempts: int, **kwargs: Any):
        super().__init__(reason, **kwargs)
        self.reason = reason
        self.attempts = attempts

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["attempts"] = self.attempts
        return result


class CircuitOpenError(RelayError):
    """Raised when the circuit breaker rejects a call without invoking it."""

    default_category = ErrorCategory.CIRCUIT

    def __init__(
        self,
        dependency: str = "default",
        *,
        retry_after: float | None = None,
        message: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(
            message or f"Circuit '{dependency}' is open, rejecting request",
            retry_after=retry_after,
            **kwargs,
        )
        self.dependency = dependency
        self.context.dependency = dependency


class CancellationError(RelayError):
    """Raised whenever a call observes its cancellation token cancelled."""

    default_category = ErrorCategory.CANCELLATION

    def __init__(self, reason: str = "cancelled", **kwargs: Any):
        super().__init__(f"Call cancelled: {reason}", **kwargs)
        self.reason = reason


class DeadlineExceeded(CancellationError):
    """Cancellation triggered by an elapsed per-call deadline."""

    def __init__(self, reason: str = "deadline exceeded", timeout: float | None = None, **kwargs: Any):
        super().__init__(reason, **kwargs)
        self.timeout = timeout


class ConfigError(RelayError, ValueError):
    """Invalid configuration supplied at construction time."""

    default_category = ErrorCategory.CONFIG

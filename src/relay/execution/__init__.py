"""Call orchestration: rate limiting, circuit breaking, retry and cancellation.

Leaf-first:
    cancellation.py     CancellationToken, cancellable_sleep
    models.py           Success / RetryableFailure / PermanentFailure, CallAttempt
    rate_limit.py       SlidingWindowLimiter
    circuit_breaker.py  CircuitBreaker
    retry.py            RetryPolicy
    orchestrator.py     RequestOrchestrator
    registry.py         DependencyRegistry
"""

from .cancellation import CancellationToken, cancellable_sleep
from .circuit_breaker import (
    BreakerState,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitStats,
    Permission,
)
from .models import (
    AttemptStatus,
    CallAttempt,
    CallReport,
    FailureKind,
    Outcome,
    PermanentFailure,
    RetryableFailure,
    Success,
)
from .orchestrator import RequestOrchestrator, classify_exception
from .rate_limit import Admission, RateLimiterConfig, SlidingWindowLimiter, WindowState
from .registry import Dependency, DependencyRegistry
from .retry import NoRetry, RetryDecision, RetryPolicy

__all__ = [
    # Cancellation
    "CancellationToken",
    "cancellable_sleep",
    # Circuit breaker
    "BreakerState",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitStats",
    "Permission",
    # Models
    "AttemptStatus",
    "CallAttempt",
    "CallReport",
    "FailureKind",
    "Outcome",
    "PermanentFailure",
    "RetryableFailure",
    "Success",
    # Orchestration
    "RequestOrchestrator",
    "classify_exception",
    # Rate limiting
    "Admission",
    "RateLimiterConfig",
    "SlidingWindowLimiter",
    "WindowState",
    # Registry
    "Dependency",
    "DependencyRegistry",
    # Retry
    "NoRetry",
    "RetryDecision",
    "RetryPolicy",
]

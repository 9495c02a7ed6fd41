"""relay - resilient calls to unreliable dependencies.

Wraps a single-attempt transport call with a sliding-window rate limiter,
a circuit breaker, exponential-backoff retry and cooperative cancellation.

Quick start::

    from relay import CancellationToken, DependencyRegistry, get_settings

    registry = DependencyRegistry.from_settings(get_settings())
    billing = registry.orchestrator("billing", billing_transport)
    invoice = await billing.execute(request, CancellationToken(), timeout=5.0)
"""

from relay.core.errors import (
    CancellationError,
    CircuitOpenError,
    ConfigError,
    DeadlineExceeded,
    PermanentCallError,
    RelayError,
    RetryableCallError,
    TransientError,
)
from relay.core.settings import RelaySettings, get_settings
from relay.execution import (
    CallReport,
    CancellationToken,
    CircuitBreaker,
    CircuitState,
    DependencyRegistry,
    PermanentFailure,
    RequestOrchestrator,
    RetryableFailure,
    RetryPolicy,
    SlidingWindowLimiter,
    Success,
)

__version__ = "0.1.0"

__all__ = [
    "CallReport",
    "CancellationError",
    "CancellationToken",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "ConfigError",
    "DeadlineExceeded",
    "DependencyRegistry",
    "PermanentCallError",
    "PermanentFailure",
    "RelayError",
    "RelaySettings",
    "RequestOrchestrator",
    "RetryPolicy",
    "RetryableCallError",
    "RetryableFailure",
    "SlidingWindowLimiter",
    "Success",
    "TransientError",
    "get_settings",
]

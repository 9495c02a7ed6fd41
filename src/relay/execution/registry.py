"""Per-dependency ownership of shared limiter and breaker state.

A circuit breaker and a rate limiter are only meaningful when every call to
the same dependency shares them. ``DependencyRegistry`` owns one of each per
dependency name and builds orchestrators that share them.

The registry is an ordinary object that the application constructs and
passes around; there is no module-level default instance, so tests and
separate subsystems never share state by accident.

Example:
    >>> registry = DependencyRegistry.from_settings(get_settings())
    >>> billing = registry.orchestrator("billing", billing_transport)
    >>> ledger = registry.orchestrator("ledger", ledger_transport, retry_policy=NoRetry())
    >>> registry.get("billing").breaker.state
    <CircuitState.CLOSED: 'closed'>
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from relay.core.protocols import Clock, SleepFn, Transport
from relay.execution.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from relay.execution.orchestrator import RequestOrchestrator
from relay.execution.rate_limit import RateLimiterConfig, SlidingWindowLimiter
from relay.execution.retry import RetryPolicy
from relay.observability.metrics import CallMetrics

if TYPE_CHECKING:
    from relay.core.settings import RelaySettings


@dataclass(frozen=True)
class Dependency:
    """Shared guard state for one dependency."""

    name: str
    limiter: SlidingWindowLimiter
    breaker: CircuitBreaker


class DependencyRegistry:
    """Registry of named dependencies and their shared guards."""

    def __init__(
        self,
        *,
        rate_limiter: RateLimiterConfig | None = None,
        circuit_breaker: CircuitBreakerConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        default_timeout: float | None = None,
        clock: Clock = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
        metrics: CallMetrics | None = None,
    ):
        self.rate_limiter_config = rate_limiter or RateLimiterConfig()
        self.circuit_breaker_config = circuit_breaker or CircuitBreakerConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_timeout = default_timeout
        self.metrics = metrics or CallMetrics()
        self._clock = clock
        self._sleep = sleep
        self._dependencies: dict[str, Dependency] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: RelaySettings, **kwargs: Any) -> DependencyRegistry:
        """Build a registry whose defaults come from ``RelaySettings``."""
        return cls(
            rate_limiter=settings.build_rate_limiter_config(),
            circuit_breaker=settings.build_circuit_breaker_config(),
            retry_policy=settings.build_retry_policy(),
            default_timeout=settings.default_timeout,
            **kwargs,
        )

    def register(
        self,
        name: str,
        *,
        rate_limiter: RateLimiterConfig | None = None,
        circuit_breaker: CircuitBreakerConfig | None = None,
    ) -> Dependency:
        """Create the guards for ``name``, with optional per-dependency limits.

        Raises:
            ValueError: If ``name`` is already registered
        """
        with self._lock:
            if name in self._dependencies:
                raise ValueError(f"Dependency '{name}' is already registered")
            dependency = Dependency(
                name=name,
                limiter=SlidingWindowLimiter.from_config(
                    rate_limiter or self.rate_limiter_config, clock=self._clock
                ),
                breaker=CircuitBreaker.from_config(
                    name,
                    circuit_breaker or self.circuit_breaker_config,
                    clock=self._clock,
                    on_state_change=self._state_changed,
                ),
            )
            self._dependencies[name] = dependency
            return dependency

    def get(self, name: str) -> Dependency | None:
        """Get a dependency by name, returns None if not found."""
        with self._lock:
            return self._dependencies.get(name)

    def get_or_create(self, name: str) -> Dependency:
        """Get a dependency by name, registering it with defaults if needed."""
        with self._lock:
            existing = self._dependencies.get(name)
            if existing is not None:
                return existing
            return self.register(name)

    def orchestrator(
        self,
        name: str,
        transport: Transport | Callable[[Any], Any],
        *,
        retry_policy: RetryPolicy | None = None,
        default_timeout: float | None = None,
        **kwargs: Any,
    ) -> RequestOrchestrator:
        """Build an orchestrator for ``name`` that shares its limiter and breaker."""
        dependency = self.get_or_create(name)
        return RequestOrchestrator(
            transport,
            name=name,
            limiter=dependency.limiter,
            breaker=dependency.breaker,
            retry_policy=retry_policy or self.retry_policy,
            clock=self._clock,
            sleep=self._sleep,
            default_timeout=default_timeout if default_timeout is not None else self.default_timeout,
            metrics=self.metrics,
            **kwargs,
        )

    def list_all(self) -> list[str]:
        """List all registered dependency names."""
        with self._lock:
            return list(self._dependencies)

    def states(self) -> dict[str, CircuitState]:
        """Current circuit state of every dependency."""
        with self._lock:
            dependencies = list(self._dependencies.values())
        return {dep.name: dep.breaker.state for dep in dependencies}

    def remove(self, name: str) -> None:
        """Remove a dependency by name."""
        with self._lock:
            self._dependencies.pop(name, None)

    def reset_all(self) -> None:
        """Reset every breaker to CLOSED and clear every rate-limit window."""
        with self._lock:
            dependencies = list(self._dependencies.values())
        for dependency in dependencies:
            dependency.breaker.reset()
            dependency.limiter.reset()

    def _state_changed(self, name: str, old: CircuitState, new: CircuitState) -> None:
        self.metrics.record_circuit_state(name, new.value)

"""Circuit breaker pattern for fault tolerance.

Prevents cascading failures by failing fast when a dependency keeps
failing. One breaker is shared by every call to the same dependency.

States:
    CLOSED: Normal operation, requests pass through
    OPEN: Failing fast, requests rejected immediately
    HALF_OPEN: One probe request allowed through to test recovery

Transitions:
    CLOSED    --failure_threshold consecutive failures-->  OPEN
    OPEN      --cool-down elapsed, on next check------->  HALF_OPEN
    HALF_OPEN --probe succeeds------------------------->  CLOSED
    HALF_OPEN --probe fails---------------------------->  OPEN (cool-down restarts)

The transition rules live in the pure functions ``allow`` and ``on_result``
over an immutable ``BreakerState``; ``CircuitBreaker`` holds the current
state for a dependency and serializes updates with a lock.

Only retryable failures are reported as failures. Permanent failures are
neutral (retrying would not help regardless of dependency health), and
rejections never count since they never reached the transport.

Example:
    >>> from relay.execution.circuit_breaker import CircuitBreaker
    >>>
    >>> breaker = CircuitBreaker(name="billing", failure_threshold=5, cool_down_seconds=30.0)
    >>>
    >>> permission = breaker.acquire()
    >>> if permission.allowed:
    ...     try:
    ...         result = call_billing()
    ...         breaker.on_result(True, permission)
    ...     except TimeoutError:
    ...         breaker.on_result(False, permission)
    ...         raise
    ... else:
    ...     raise CircuitOpenError("billing")
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum

from relay.core.errors import CircuitOpenError, ConfigError
from relay.core.logging import get_logger
from relay.core.protocols import Clock

logger = get_logger(__name__)

# Concurrent probes allowed while HALF_OPEN
HALF_OPEN_MAX_CALLS = 1


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


class Permission(str, Enum):
    """Result of an admission check."""

    ALLOW = "allow"
    PROBE = "probe"    # Allowed as the single HALF_OPEN probe
    REJECT = "reject"

    @property
    def allowed(self) -> bool:
        return self is not Permission.REJECT


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Breaker thresholds.

    Attributes:
        failure_threshold: Consecutive failures before opening
        cool_down_seconds: Seconds OPEN before a probe is allowed
    """

    failure_threshold: int = 5
    cool_down_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ConfigError(f"failure_threshold must be >= 1, got {self.failure_threshold}")
        if self.cool_down_seconds < 0:
            raise ConfigError(f"cool_down_seconds must be >= 0, got {self.cool_down_seconds}")


@dataclass(frozen=True)
class BreakerState:
    """Immutable snapshot of a breaker."""

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: float | None = None
    probes_in_flight: int = 0


def _cool_down_elapsed(s: BreakerState, now: float, config: CircuitBreakerConfig) -> bool:
    return s.opened_at is not None and now - s.opened_at >= config.cool_down_seconds


def refresh(s: BreakerState, now: float, config: CircuitBreakerConfig) -> BreakerState:
    """Apply the lazy OPEN -> HALF_OPEN transition if the cool-down elapsed."""
    if s.state == CircuitState.OPEN and _cool_down_elapsed(s, now, config):
        return replace(s, state=CircuitState.HALF_OPEN, probes_in_flight=0)
    return s


def allow(s: BreakerState, now: float, config: CircuitBreakerConfig) -> tuple[BreakerState, Permission]:
    """Decide whether a call may reach the transport."""
    s = refresh(s, now, config)

    if s.state == CircuitState.CLOSED:
        return s, Permission.ALLOW

    if s.state == CircuitState.OPEN:
        return s, Permission.REJECT

    if s.probes_in_flight < HALF_OPEN_MAX_CALLS:
        return replace(s, probes_in_flight=s.probes_in_flight + 1), Permission.PROBE

    return s, Permission.REJECT


def on_result(
    s: BreakerState,
    success: bool,
    now: float,
    config: CircuitBreakerConfig,
    permission: Permission = Permission.PROBE,
) -> BreakerState:
    """Fold the outcome of an allowed call into the breaker state.

    While HALF_OPEN only the probe decides the transition. A result
    reported with ``Permission.ALLOW`` belongs to a call admitted while
    CLOSED and leaves the state untouched.
    """
    if s.state == CircuitState.HALF_OPEN:
        if permission is not Permission.PROBE:
            return s
        if success:
            return BreakerState()
        return BreakerState(
            state=CircuitState.OPEN,
            consecutive_failures=s.consecutive_failures + 1,
            opened_at=now,
        )

    if s.state == CircuitState.OPEN:
        # Late result of a call admitted before the circuit opened
        return s

    if success:
        return replace(s, consecutive_failures=0)

    failures = s.consecutive_failures + 1
    if failures >= config.failure_threshold:
        return BreakerState(state=CircuitState.OPEN, consecutive_failures=failures, opened_at=now)
    return replace(s, consecutive_failures=failures)


def release_probe(s: BreakerState) -> BreakerState:
    """Give back a HALF_OPEN probe permit without reporting an outcome."""
    if s.state == CircuitState.HALF_OPEN and s.probes_in_flight > 0:
        return replace(s, probes_in_flight=s.probes_in_flight - 1)
    return s


def remaining_cool_down(s: BreakerState, now: float, config: CircuitBreakerConfig) -> float | None:
    """Seconds until an OPEN breaker lets a probe through, None if not OPEN."""
    if s.state != CircuitState.OPEN or s.opened_at is None:
        return None
    return max(0.0, config.cool_down_seconds - (now - s.opened_at))


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate as percentage."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


StateListener = Callable[[str, CircuitState, CircuitState], None]


@dataclass
class CircuitBreaker:
    """Circuit breaker for one dependency.

    Attributes:
        name: Identifier for this circuit (the dependency name)
        failure_threshold: Consecutive failures before opening
        cool_down_seconds: Seconds to wait before testing recovery
        clock: Monotonic time source (injectable for tests)
        on_state_change: Called as (name, old, new) after each transition
    """

    name: str = "default"
    failure_threshold: int = 5
    cool_down_seconds: float = 30.0
    clock: Clock = field(default=time.monotonic, repr=False)
    on_state_change: StateListener | None = field(default=None, repr=False)

    _state: BreakerState = field(default_factory=BreakerState, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False, repr=False)
    _config: CircuitBreakerConfig = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._config = CircuitBreakerConfig(self.failure_threshold, self.cool_down_seconds)

    @classmethod
    def from_config(
        cls,
        name: str,
        config: CircuitBreakerConfig,
        clock: Clock = time.monotonic,
        on_state_change: StateListener | None = None,
    ) -> CircuitBreaker:
        return cls(
            name=name,
            failure_threshold=config.failure_threshold,
            cool_down_seconds=config.cool_down_seconds,
            clock=clock,
            on_state_change=on_state_change,
        )

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        return self.snapshot().state

    @property
    def failure_count(self) -> int:
        return self.snapshot().consecutive_failures

    @property
    def stats(self) -> CircuitStats:
        """Get circuit statistics."""
        return self._stats

    def snapshot(self) -> BreakerState:
        """Current state with any pending cool-down transition applied."""
        with self._lock:
            old = self._state
            self._state = refresh(old, self.clock(), self._config)
            new = self._state
            self._record_transition(old, new)
        self._notify(old, new)
        return new

    def remaining_cool_down(self) -> float | None:
        """Seconds until a probe is allowed, None unless OPEN."""
        with self._lock:
            return remaining_cool_down(self._state, self.clock(), self._config)

    def acquire(self) -> Permission:
        """Admission check that also reports whether this call is the probe."""
        with self._lock:
            old = self._state
            self._state, permission = allow(old, self.clock(), self._config)
            new = self._state
            self._stats.total_requests += 1
            if not permission.allowed:
                self._stats.rejected_requests += 1
            self._record_transition(old, new)
        self._notify(old, new)
        return permission

    def allow_request(self) -> bool:
        """Check if a request should be allowed.

        Returns:
            True if request can proceed, False if circuit is open
        """
        return self.acquire().allowed

    def on_result(self, success: bool, permission: Permission = Permission.PROBE) -> None:
        """Report the outcome of a call that was allowed through.

        Pass the permission returned by ``acquire`` so a late result from a
        CLOSED-era call cannot close or reopen a HALF_OPEN breaker.
        """
        with self._lock:
            old = self._state
            now = self.clock()
            self._state = on_result(old, success, now, self._config, permission)
            new = self._state
            if success:
                self._stats.successful_requests += 1
                self._stats.last_success_time = utcnow()
            else:
                self._stats.failed_requests += 1
                self._stats.last_failure_time = utcnow()
            self._record_transition(old, new)
        self._notify(old, new)

    def record_success(self) -> None:
        """Record a successful request."""
        self.on_result(True)

    def record_failure(self) -> None:
        """Record a failed request."""
        self.on_result(False)

    def release_probe(self) -> None:
        """Release a HALF_OPEN probe permit without an outcome."""
        with self._lock:
            self._state = release_probe(self._state)

    def reset(self) -> None:
        """Reset circuit to closed state."""
        with self._lock:
            old = self._state
            self._state = BreakerState()
            self._record_transition(old, self._state)
        self._notify(old, self._state)

    def force_open(self) -> None:
        """Force circuit to open state (for testing/maintenance)."""
        with self._lock:
            old = self._state
            self._state = BreakerState(
                state=CircuitState.OPEN,
                consecutive_failures=old.consecutive_failures,
                opened_at=self.clock(),
            )
            self._record_transition(old, self._state)
        self._notify(old, self._state)

    def ensure_allowed(self) -> Permission:
        """Admission check that raises instead of returning REJECT.

        Raises:
            CircuitOpenError: If the circuit rejects the call
        """
        permission = self.acquire()
        if not permission.allowed:
            raise CircuitOpenError(self.name, retry_after=self.remaining_cool_down())
        return permission

    def _record_transition(self, old: BreakerState, new: BreakerState) -> None:
        if old.state != new.state:
            self._stats.state_changes += 1
            self._stats.last_state_change = utcnow()

    def _notify(self, old: BreakerState, new: BreakerState) -> None:
        if old.state == new.state:
            return
        logger.info(
            "circuit_state_changed",
            dependency=self.name,
            old_state=old.state.value,
            new_state=new.state.value,
            consecutive_failures=new.consecutive_failures,
        )
        if self.on_state_change is not None:
            self.on_state_change(self.name, old.state, new.state)

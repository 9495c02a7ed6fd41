"""Rate Limiting: sliding-window admission control for call starts.

Manifesto:
External dependencies enforce rate limits. Exceeding them causes bans or
429 errors. The sliding-window limiter lets relay throttle outgoing calls
*before* hitting the limit: no more than ``max_calls`` attempts may start
in any rolling window of ``window_seconds``. This is a hard invariant, not
an approximation, regardless of how concurrent callers interleave.

ARCHITECTURE
────────────
::

    admit(state, now, max_calls, window)   ─ pure: (new state, Admission)
      │
      └── SlidingWindowLimiter             ─ shared per dependency,
                                             serializes admit() with a Lock

    WindowState.timestamps  (oldest first)
      ├── pruned (ts <= now - window dropped) before every check
      ├── appended with ``now`` on admission
      └── untouched on rejection

A rejection carries ``retry_after = window - (now - oldest)``: the time
until the oldest start leaves the window. The limiter never fails; it only
admits or defers. Waiting is the orchestrator's job.

The limiter is consulted before the circuit breaker. A start it admits
keeps its slot even when the breaker then rejects the call, so callers
hammering an OPEN circuit still fill the window and may see limiter waits
before their CircuitOpenError.

Related modules:
    circuit_breaker.py  fail-fast on sustained failures
    retry.py            backoff on transient failures
    cancellation.py     the cancellable wait used while deferred

Example::

    limiter = SlidingWindowLimiter(max_calls=2, window_seconds=1.0)
    admission = limiter.admit()
    if not admission.allowed:
        await cancellable_sleep(admission.retry_after, token)

Tags:
    relay, execution, rate-limit, throttle, sliding-window

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from relay.core.errors import ConfigError, RateLimitExceeded
from relay.core.protocols import Clock


@dataclass(frozen=True)
class RateLimiterConfig:
    """Sliding window limits.

    Attributes:
        max_calls: Maximum call starts per window
        window_seconds: Window length in seconds
    """

    max_calls: int = 10
    window_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_calls < 1:
            raise ConfigError(f"max_calls must be >= 1, got {self.max_calls}")
        if self.window_seconds <= 0:
            raise ConfigError(f"window_seconds must be > 0, got {self.window_seconds}")


@dataclass(frozen=True)
class Admission:
    """Decision of a single admission check."""

    allowed: bool
    retry_after: float = 0.0


@dataclass(frozen=True)
class WindowState:
    """Call-start timestamps inside the current window, oldest first."""

    timestamps: tuple[float, ...] = ()


def prune(state: WindowState, now: float, window_seconds: float) -> WindowState:
    """Drop timestamps that have left the window ending at ``now``."""
    cutoff = now - window_seconds
    if not state.timestamps or state.timestamps[0] > cutoff:
        return state
    return WindowState(tuple(ts for ts in state.timestamps if ts > cutoff))


def admit(
    state: WindowState,
    now: float,
    max_calls: int,
    window_seconds: float,
) -> tuple[WindowState, Admission]:
    """Decide whether a call may start at ``now``.

    Returns:
        The new window state and the admission decision. On rejection the
        returned state is only pruned; the rejected start is not recorded.
    """
    state = prune(state, now, window_seconds)
    if len(state.timestamps) < max_calls:
        return WindowState(state.timestamps + (now,)), Admission(allowed=True)

    oldest = state.timestamps[0]
    retry_after = max(0.0, window_seconds - (now - oldest))
    return state, Admission(allowed=False, retry_after=retry_after)


@dataclass
class SlidingWindowLimiter:
    """Sliding window rate limiter shared by every call to one dependency.

    All access to the timestamp window is serialized with an internal lock,
    so two callers can never both observe room for the last slot.

    Every admitted start counts, including one the circuit breaker rejects
    right after admission.

    Attributes:
        max_calls: Maximum call starts per window
        window_seconds: Window size in seconds
        clock: Monotonic time source (injectable for tests)
    """

    max_calls: int = 10
    window_seconds: float = 1.0
    clock: Clock = field(default=time.monotonic, repr=False)

    _state: WindowState = field(default_factory=WindowState, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        RateLimiterConfig(self.max_calls, self.window_seconds)

    @classmethod
    def from_config(cls, config: RateLimiterConfig, clock: Clock = time.monotonic) -> SlidingWindowLimiter:
        return cls(max_calls=config.max_calls, window_seconds=config.window_seconds, clock=clock)

    def admit(self, now: float | None = None) -> Admission:
        """Admit a call start at ``now`` (default: the limiter's clock)."""
        with self._lock:
            if now is None:
                now = self.clock()
            self._state, admission = admit(self._state, now, self.max_calls, self.window_seconds)
            return admission

    def check(self) -> None:
        """Admit a call start or raise.

        Raises:
            RateLimitExceeded: If the window is full, with ``retry_after`` set
        """
        admission = self.admit()
        if not admission.allowed:
            raise RateLimitExceeded(
                f"Rate limit of {self.max_calls} calls per {self.window_seconds}s exceeded",
                retry_after=admission.retry_after,
            )

    def get_wait_time(self) -> float:
        """Seconds until the window has room (0 if it has room now)."""
        with self._lock:
            now = self.clock()
            self._state = prune(self._state, now, self.window_seconds)
            if len(self._state.timestamps) < self.max_calls:
                return 0.0
            return max(0.0, self.window_seconds - (now - self._state.timestamps[0]))

    @property
    def current_count(self) -> int:
        """Call starts inside the current window."""
        with self._lock:
            self._state = prune(self._state, self.clock(), self.window_seconds)
            return len(self._state.timestamps)

    def reset(self) -> None:
        """Forget all recorded starts."""
        with self._lock:
            self._state = WindowState()

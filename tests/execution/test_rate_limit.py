"""Tests for sliding-window rate limiting."""

import random
import threading

import pytest

from relay.core.errors import ConfigError, RateLimitExceeded
from relay.execution.rate_limit import (
    Admission,
    RateLimiterConfig,
    SlidingWindowLimiter,
    WindowState,
    admit,
    prune,
)


class TestAdmitFunction:
    """Tests for the pure admit()/prune() functions."""

    def test_admits_until_full(self):
        """Starts are admitted and recorded while the window has room."""
        state = WindowState()
        state, first = admit(state, 0.0, max_calls=2, window_seconds=1.0)
        state, second = admit(state, 0.0, max_calls=2, window_seconds=1.0)

        assert first == Admission(allowed=True)
        assert second.allowed is True
        assert state.timestamps == (0.0, 0.0)

    def test_third_start_deferred_for_full_window(self):
        """Two starts at t=0 with max 2 per 1s defer the third by 1s."""
        state = WindowState((0.0, 0.0))
        new_state, admission = admit(state, 0.0, max_calls=2, window_seconds=1.0)

        assert admission.allowed is False
        assert admission.retry_after == pytest.approx(1.0)
        assert new_state.timestamps == (0.0, 0.0)

    def test_retry_after_counts_from_oldest(self):
        """retry_after is the time until the oldest start leaves the window."""
        state = WindowState((0.2, 0.5))
        _, admission = admit(state, 0.7, max_calls=2, window_seconds=1.0)

        assert admission.allowed is False
        assert admission.retry_after == pytest.approx(0.5)

    def test_rejection_does_not_record(self):
        """A rejected start leaves the window unchanged."""
        state = WindowState((0.0,))
        for _ in range(5):
            state, admission = admit(state, 0.1, max_calls=1, window_seconds=1.0)
            assert admission.allowed is False
        assert state.timestamps == (0.0,)

    def test_boundary_timestamp_is_pruned(self):
        """A start exactly one window old no longer counts."""
        state = WindowState((0.0, 0.5))
        state, admission = admit(state, 1.0, max_calls=2, window_seconds=1.0)

        assert admission.allowed is True
        assert state.timestamps == (0.5, 1.0)

    def test_prune_returns_same_state_when_nothing_expired(self):
        """prune() is a no-op when the oldest start is still inside the window."""
        state = WindowState((0.5, 0.9))
        assert prune(state, 1.0, 1.0) is state

    def test_prune_drops_everything_after_long_idle(self):
        """All starts are dropped after a long idle period."""
        state = WindowState((0.0, 0.1, 0.2))
        assert prune(state, 100.0, 1.0).timestamps == ()


class TestSlidingWindowLimiter:
    """Tests for SlidingWindowLimiter."""

    def test_configuration(self, clock):
        """Configured limits are exposed."""
        limiter = SlidingWindowLimiter(max_calls=5, window_seconds=2.0, clock=clock)
        assert limiter.max_calls == 5
        assert limiter.window_seconds == 2.0

    def test_from_config(self, clock):
        """from_config copies the config values."""
        limiter = SlidingWindowLimiter.from_config(RateLimiterConfig(max_calls=3, window_seconds=0.5), clock=clock)
        assert limiter.max_calls == 3
        assert limiter.window_seconds == 0.5

    def test_window_slides_with_clock(self, clock):
        """Capacity returns as old starts leave the window."""
        limiter = SlidingWindowLimiter(max_calls=2, window_seconds=1.0, clock=clock)

        assert limiter.admit().allowed
        clock.advance(0.5)
        assert limiter.admit().allowed

        deferred = limiter.admit()
        assert deferred.allowed is False
        assert deferred.retry_after == pytest.approx(0.5)

        clock.advance(0.5)
        assert limiter.admit().allowed
        assert limiter.admit().allowed is False

    def test_explicit_now_overrides_clock(self, clock):
        """admit(now=...) uses the given time instead of the clock."""
        limiter = SlidingWindowLimiter(max_calls=1, window_seconds=1.0, clock=clock)
        assert limiter.admit(now=10.0).allowed
        assert limiter.admit(now=10.5).allowed is False
        assert limiter.admit(now=11.0).allowed

    def test_check_raises_when_full(self, clock):
        """check() raises RateLimitExceeded carrying retry_after."""
        limiter = SlidingWindowLimiter(max_calls=1, window_seconds=2.0, clock=clock)
        limiter.check()

        clock.advance(0.5)
        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.check()

        assert exc_info.value.retry_after == pytest.approx(1.5)
        assert exc_info.value.retryable is True

    def test_get_wait_time(self, clock):
        """get_wait_time() is 0 with room and the remaining time when full."""
        limiter = SlidingWindowLimiter(max_calls=1, window_seconds=1.0, clock=clock)
        assert limiter.get_wait_time() == 0.0

        limiter.admit()
        clock.advance(0.25)
        assert limiter.get_wait_time() == pytest.approx(0.75)

    def test_current_count(self, clock):
        """current_count reflects only starts inside the window."""
        limiter = SlidingWindowLimiter(max_calls=5, window_seconds=1.0, clock=clock)
        limiter.admit()
        clock.advance(0.5)
        limiter.admit()
        assert limiter.current_count == 2

        clock.advance(0.5)
        assert limiter.current_count == 1

    def test_reset(self, clock):
        """reset() forgets every recorded start."""
        limiter = SlidingWindowLimiter(max_calls=1, window_seconds=1.0, clock=clock)
        limiter.admit()
        assert limiter.admit().allowed is False

        limiter.reset()
        assert limiter.current_count == 0
        assert limiter.admit().allowed

    def test_never_more_than_max_calls_in_any_window(self):
        """No window of length W ever contains more than max_calls admitted starts."""
        rng = random.Random(1234)
        limiter = SlidingWindowLimiter(max_calls=3, window_seconds=1.0)

        now = 0.0
        admitted: list[float] = []
        for _ in range(500):
            now += rng.randint(0, 5) * 0.0625
            if limiter.admit(now=now).allowed:
                admitted.append(now)

        assert len(admitted) > 3
        for i, start in enumerate(admitted):
            in_window = [ts for ts in admitted[i:] if ts < start + 1.0]
            assert len(in_window) <= 3

    def test_concurrent_admission_is_exact(self, clock):
        """Threads racing for the last slots never over-admit."""
        limiter = SlidingWindowLimiter(max_calls=5, window_seconds=1.0, clock=clock)
        barrier = threading.Barrier(20)
        results: list[bool] = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            allowed = limiter.admit().allowed
            with results_lock:
                results.append(allowed)

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 5
        assert results.count(False) == 15


class TestRateLimiterConfig:
    """Tests for RateLimiterConfig validation."""

    def test_defaults(self):
        config = RateLimiterConfig()
        assert config.max_calls == 10
        assert config.window_seconds == 1.0

    @pytest.mark.parametrize("max_calls", [0, -1])
    def test_rejects_non_positive_max_calls(self, max_calls):
        """max_calls below 1 is a configuration error."""
        with pytest.raises(ConfigError):
            RateLimiterConfig(max_calls=max_calls)

    @pytest.mark.parametrize("window", [0.0, -0.5])
    def test_rejects_non_positive_window(self, window):
        """A window that is not positive is a configuration error."""
        with pytest.raises(ConfigError):
            SlidingWindowLimiter(max_calls=1, window_seconds=window)

    def test_config_error_is_value_error(self):
        """ConfigError can be caught as ValueError."""
        with pytest.raises(ValueError):
            RateLimiterConfig(max_calls=0)

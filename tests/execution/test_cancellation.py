"""Tests for cancellation tokens and the cancellable wait."""

import asyncio
import threading
import time

import pytest

from relay.core.errors import CancellationError, DeadlineExceeded
from relay.execution.cancellation import CancellationToken, cancellable_sleep


class TestCancellationToken:
    """Tests for CancellationToken state."""

    def test_initially_active(self):
        token = CancellationToken()
        assert token.is_cancelled is False
        assert token.reason is None
        assert token.timed_out is False
        token.raise_if_cancelled()

    def test_cancel_is_terminal(self):
        """The first cancel wins; later calls report False."""
        token = CancellationToken()
        assert token.cancel("user stop") is True
        assert token.cancel("again") is False
        assert token.is_cancelled is True
        assert token.reason == "user stop"

    def test_raise_if_cancelled(self):
        """raise_if_cancelled raises CancellationError with the reason."""
        token = CancellationToken()
        token.cancel("shutdown")

        with pytest.raises(CancellationError) as exc_info:
            token.raise_if_cancelled()

        assert not isinstance(exc_info.value, DeadlineExceeded)
        assert exc_info.value.reason == "shutdown"

    def test_callbacks_run_once_on_cancel(self):
        """Registered callbacks run exactly once."""
        token = CancellationToken()
        calls = []
        token.add_callback(lambda: calls.append("a"))
        token.add_callback(lambda: calls.append("b"))

        token.cancel()
        token.cancel()

        assert calls == ["a", "b"]

    def test_callback_runs_immediately_when_already_cancelled(self):
        token = CancellationToken()
        token.cancel()
        calls = []
        token.add_callback(lambda: calls.append(1))
        assert calls == [1]

    def test_removed_callback_does_not_run(self):
        """The remover returned by add_callback unregisters it."""
        token = CancellationToken()
        calls = []
        remove = token.add_callback(lambda: calls.append(1))
        remove()
        token.cancel()
        assert calls == []

    def test_repr(self):
        token = CancellationToken()
        assert repr(token) == "CancellationToken(active)"
        token.cancel()
        assert repr(token) == "CancellationToken(cancelled)"


class TestDeadlines:
    """Tests for cancel_after deadlines."""

    def test_non_positive_deadline_cancels_immediately(self):
        """A deadline of zero is already exceeded."""
        token = CancellationToken().cancel_after(0)

        assert token.is_cancelled
        assert token.timed_out
        with pytest.raises(DeadlineExceeded):
            token.raise_if_cancelled()

    @pytest.mark.timeout(5)
    def test_deadline_fires(self):
        """The token is cancelled with DeadlineExceeded once the deadline passes."""
        token = CancellationToken()
        fired = threading.Event()
        token.add_callback(fired.set)

        token.cancel_after(0.05)

        assert fired.wait(2.0)
        assert token.timed_out
        with pytest.raises(DeadlineExceeded) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.timeout == 0.05

    @pytest.mark.timeout(5)
    def test_close_disarms_deadline(self):
        """close() stops a pending deadline from firing."""
        token = CancellationToken().cancel_after(0.05)
        token.close()
        time.sleep(0.15)
        assert token.is_cancelled is False

    def test_manual_cancel_is_not_a_timeout(self):
        token = CancellationToken().cancel_after(60)
        token.cancel("user")
        assert token.timed_out is False
        with pytest.raises(CancellationError) as exc_info:
            token.raise_if_cancelled()
        assert not isinstance(exc_info.value, DeadlineExceeded)

    @pytest.mark.timeout(5)
    @pytest.mark.asyncio
    async def test_deadline_inside_loop_uses_no_thread(self):
        """With a running loop the deadline is scheduled on the loop itself."""
        threads_before = threading.active_count()

        token = CancellationToken().cancel_after(0.05)

        assert threading.active_count() <= threads_before
        await asyncio.wait_for(token.wait(), timeout=2.0)
        assert token.timed_out
        with pytest.raises(DeadlineExceeded):
            token.raise_if_cancelled()

    @pytest.mark.timeout(5)
    @pytest.mark.asyncio
    async def test_close_disarms_loop_deadline(self):
        token = CancellationToken().cancel_after(0.05)
        token.close()
        await asyncio.sleep(0.15)
        assert token.is_cancelled is False


class TestLinkedTokens:
    """Tests for linked tokens."""

    def test_parent_cancel_propagates(self):
        """Cancelling a parent cancels the linked child with the same reason."""
        parent = CancellationToken()
        child = CancellationToken.linked(parent)

        parent.cancel("parent stop")

        assert child.is_cancelled
        assert child.reason == "parent stop"

    def test_child_cancel_does_not_touch_parent(self):
        parent = CancellationToken()
        child = CancellationToken.linked(parent)
        child.cancel()
        assert parent.is_cancelled is False

    def test_linked_to_cancelled_parent(self):
        """Linking to an already-cancelled parent yields a cancelled child."""
        parent = CancellationToken()
        parent.cancel("early")
        child = CancellationToken.linked(parent)
        assert child.is_cancelled
        assert child.reason == "early"

    def test_closed_child_detaches(self):
        """After close(), parent cancellation no longer reaches the child."""
        parent = CancellationToken()
        child = CancellationToken.linked(parent)
        child.close()

        parent.cancel()

        assert child.is_cancelled is False

    def test_parent_deadline_propagates_as_deadline(self):
        """A parent's elapsed deadline surfaces as DeadlineExceeded on the child."""
        parent = CancellationToken().cancel_after(0)
        child = CancellationToken.linked(parent)
        with pytest.raises(DeadlineExceeded):
            child.raise_if_cancelled()


class TestCancellableSleep:
    """Tests for cancellable_sleep."""

    @pytest.mark.asyncio
    async def test_sleeps_without_token(self, fake_sleep):
        """Without a token the injected sleep is awaited for the full delay."""
        await cancellable_sleep(1.5, sleep=fake_sleep)
        assert fake_sleep.calls == [1.5]

    @pytest.mark.asyncio
    async def test_sleeps_with_active_token(self, fake_sleep):
        await cancellable_sleep(2.0, CancellationToken(), sleep=fake_sleep)
        assert fake_sleep.calls == [2.0]

    @pytest.mark.asyncio
    async def test_already_cancelled_raises_without_sleeping(self, fake_sleep):
        """A cancelled token raises before any sleep starts."""
        token = CancellationToken()
        token.cancel("stop")

        with pytest.raises(CancellationError):
            await cancellable_sleep(5.0, token, sleep=fake_sleep)

        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_zero_delay_returns_immediately(self, fake_sleep):
        await cancellable_sleep(0.0, CancellationToken(), sleep=fake_sleep)
        assert fake_sleep.calls == []

    @pytest.mark.timeout(5)
    @pytest.mark.asyncio
    async def test_wakes_promptly_on_cancel(self):
        """Cancellation interrupts a long sleep without waiting it out."""
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, token.cancel, "stop")

        started = time.monotonic()
        with pytest.raises(CancellationError):
            await cancellable_sleep(30.0, token)

        assert time.monotonic() - started < 2.0

    @pytest.mark.timeout(5)
    @pytest.mark.asyncio
    async def test_cancel_from_another_thread(self):
        """A cancel issued from a foreign thread wakes the sleeping coroutine."""
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel, args=("thread",))
        timer.start()
        try:
            with pytest.raises(CancellationError) as exc_info:
                await cancellable_sleep(30.0, token)
        finally:
            timer.cancel()

        assert exc_info.value.reason == "thread"

    @pytest.mark.timeout(5)
    @pytest.mark.asyncio
    async def test_deadline_during_sleep(self):
        """A deadline that elapses mid-sleep raises DeadlineExceeded."""
        token = CancellationToken().cancel_after(0.05)
        with pytest.raises(DeadlineExceeded):
            await cancellable_sleep(30.0, token)

    @pytest.mark.timeout(5)
    @pytest.mark.asyncio
    async def test_wait_returns_on_cancel(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await asyncio.wait_for(token.wait(), timeout=2.0)
        assert token.is_cancelled

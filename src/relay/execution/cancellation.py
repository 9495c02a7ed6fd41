"""Cooperative cancellation and the single cancellable wait.

Manifesto:
    Relay has exactly two places where a call may suspend: the backoff
    between retry attempts and the wait for room in a rate-limit window.
    Both go through ``cancellable_sleep`` so there is one code path that
    reacts to cancellation, not two independent timer mechanisms.

    Deadlines are not a separate mechanism either. ``cancel_after`` arms a
    timer that cancels the same token a caller would cancel by hand; the
    only difference is that the resulting error is ``DeadlineExceeded``.

Architecture:
    ::

        caller ──owns──▶ CancellationToken ◀──observes── RequestOrchestrator
                              │    ▲                        │
                 cancel() ────┘    └── cancel_after(t)      │
                              │                             ▼
                              └──wakes──▶ cancellable_sleep(delay, token)
                                          (retry backoff, rate-limit wait)

    A token is terminal once cancelled. Transport calls already in flight are
    never interrupted; cancellation is observed at the next checkpoint.

Examples:
    >>> token = CancellationToken()
    >>> token.is_cancelled
    False
    >>> token.cancel("user pressed stop")
    True
    >>> token.cancel("again")
    False
    >>> token.reason
    'user pressed stop'

Tags:
    cancellation, timeout, deadline, asyncio, relay

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable

from relay.core.errors import CancellationError, DeadlineExceeded
from relay.core.protocols import SleepFn


class CancellationToken:
    """Caller-owned cancellation signal with two states: active and cancelled.

    Thread-safe: ``cancel`` may be called from any thread, including a timer
    thread, while an event loop is waiting on ``wait()``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._reason: str | None = None
        self._timeout: float | None = None
        self._callbacks: list[Callable[[], None]] = []
        self._timer: asyncio.TimerHandle | threading.Timer | None = None
        self._unlinks: list[Callable[[], None]] = []

    @classmethod
    def linked(cls, *parents: CancellationToken) -> CancellationToken:
        """Create a token that is cancelled whenever any parent is cancelled."""
        child = cls()
        for parent in parents:
            child._unlinks.append(
                parent.add_callback(lambda p=parent: child._cancel(p.reason or "cancelled", p._timeout))
            )
        return child

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def reason(self) -> str | None:
        """Why the token was cancelled, or None while active."""
        with self._lock:
            return self._reason

    @property
    def timed_out(self) -> bool:
        """True if cancellation came from an elapsed deadline."""
        with self._lock:
            return self._cancelled and self._timeout is not None

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the token.

        Returns:
            True if this call cancelled it, False if it was already cancelled
        """
        return self._cancel(reason, None)

    def _cancel(self, reason: str, timeout: float | None) -> bool:
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            self._reason = reason
            self._timeout = timeout
            callbacks = list(self._callbacks)
            self._callbacks.clear()
            timer, self._timer = self._timer, None

        if timer is not None:
            timer.cancel()
        for callback in callbacks:
            callback()
        return True

    def cancel_after(self, seconds: float) -> CancellationToken:
        """Arm a deadline: cancel this token once ``seconds`` have elapsed.

        Inside a running event loop the deadline is a ``loop.call_later``
        handle; outside one it falls back to a daemon ``threading.Timer``.
        """
        if seconds <= 0:
            self._cancel("deadline exceeded", seconds)
            return self

        with self._lock:
            if self._cancelled:
                return self
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._arm(seconds)
        return self

    def _arm(self, seconds: float) -> asyncio.TimerHandle | threading.Timer:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop in this thread: sync callers get a timer thread
            timer = threading.Timer(seconds, self._cancel, args=("deadline exceeded", seconds))
            timer.daemon = True
            timer.start()
            return timer
        return loop.call_later(seconds, self._cancel, "deadline exceeded", seconds)

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` on cancellation (immediately if already cancelled).

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return remove

        callback()
        return lambda: None

    def raise_if_cancelled(self) -> None:
        """Raise CancellationError (or DeadlineExceeded) if cancelled."""
        with self._lock:
            if not self._cancelled:
                return
            reason = self._reason or "cancelled"
            timeout = self._timeout

        if timeout is not None:
            raise DeadlineExceeded(reason, timeout=timeout)
        raise CancellationError(reason)

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()

        def _wake() -> None:
            if not future.done():
                future.set_result(None)

        remove = self.add_callback(lambda: loop.call_soon_threadsafe(_wake))
        try:
            await future
        finally:
            remove()

    def close(self) -> None:
        """Disarm any deadline timer and detach from parent tokens."""
        with self._lock:
            timer, self._timer = self._timer, None
            unlinks, self._unlinks = self._unlinks, []
        if timer is not None:
            timer.cancel()
        for unlink in unlinks:
            unlink()

    def __repr__(self) -> str:
        state = "cancelled" if self.is_cancelled else "active"
        return f"CancellationToken({state})"


async def cancellable_sleep(
    delay: float,
    token: CancellationToken | None = None,
    *,
    sleep: SleepFn = asyncio.sleep,
) -> None:
    """Wait ``delay`` seconds unless ``token`` is cancelled first.

    Checks the token before waiting and wakes as soon as it is cancelled,
    without waiting out the rest of the delay.

    Raises:
        CancellationError: If the token is, or becomes, cancelled
    """
    if token is None:
        if delay > 0:
            await sleep(delay)
        return

    token.raise_if_cancelled()
    if delay <= 0:
        return

    sleep_task = asyncio.ensure_future(sleep(delay))
    cancel_task = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({sleep_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleep_task, cancel_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(sleep_task, cancel_task, return_exceptions=True)

    token.raise_if_cancelled()

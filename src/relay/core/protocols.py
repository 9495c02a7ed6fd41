"""
Protocol definitions for relay's external collaborators.

Relay never talks to a network itself and never reads the wall clock
directly. The three things it needs from the outside world are described
here as structural types so tests can hand in fakes:

- **Clock:** ``() -> float`` monotonic seconds (default ``time.monotonic``)
- **SleepFn:** ``async (seconds) -> None`` (default ``asyncio.sleep``)
- **Transport:** one attempt of the wrapped call, sync or async

Tags:
    protocols, transport, clock, relay

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

Clock = Callable[[], float]
SleepFn = Callable[[float], Awaitable[None]]


@runtime_checkable
class Transport(Protocol):
    """A single-attempt call against a dependency.

    ``invoke`` performs exactly one request. It returns one of
    ``Success``, ``RetryableFailure`` or ``PermanentFailure`` (a plain value
    is treated as success), or raises; raised exceptions are classified by
    the orchestrator. It may be a regular function or a coroutine function.
    """

    def invoke(self, request: Any) -> Any: ...

"""
Shared pytest fixtures for relay tests.

This module provides:
- A fake monotonic clock and a fake async sleep that advances it, so the
  state machine and window logic are tested without real waiting
- Scripted transports that replay a list of outcomes
- Settings cache cleanup for test isolation
"""

import asyncio
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pytest

from relay.core.settings import clear_settings_cache


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Async sleep that advances a FakeClock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        self.clock.advance(delay)
        await asyncio.sleep(0)


class ScriptedTransport:
    """Async transport that replays outcomes in order.

    Items may be outcomes, plain values, or exceptions (which are raised).
    The last item repeats once the script runs out.
    """

    def __init__(self, script: Iterable[Any]):
        self.script = list(script)
        self.requests: list[Any] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def invoke(self, request: Any) -> Any:
        self.requests.append(request)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def scripted():
    """Factory for ScriptedTransport instances."""
    return ScriptedTransport


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Keep RELAY_* env vars and .env files out of every test."""
    import os

    for key in list(os.environ):
        if key.startswith("RELAY_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()

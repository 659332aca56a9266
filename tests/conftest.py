"""
Shared fixtures: a simulated clock and a scripted push endpoint.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

import httpx
import pytest


BASE_URL = "http://localhost:3000"


async def settle(predicate: Callable[[], bool] | None = None, rounds: int = 200) -> None:
    """Let pending tasks run for ``rounds`` loop iterations.

    With a ``predicate``, return as soon as it holds and fail the test if
    it still does not hold after the last round.
    """
    for _ in range(rounds):
        if predicate is not None and predicate():
            return
        await asyncio.sleep(0)
    if predicate is not None and not predicate():
        raise AssertionError(f"condition still false after {rounds} loop rounds")


class FakeClock:
    """Drop-in for ``asyncio.sleep``; time only moves on :meth:`advance`."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._waiters: list[tuple[float, asyncio.Future[None]]] = []

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + delay, future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, f in self._waiters if not f.done())

    async def advance(self, seconds: float) -> None:
        self.now += seconds
        due = [w for w in self._waiters if w[0] <= self.now]
        self._waiters = [w for w in self._waiters if w[0] > self.now]
        for _, future in due:
            if not future.done():
                future.set_result(None)
        await settle()


class FakeStreamResponse:
    """Minimal stand-in for a streaming ``httpx.Response``."""

    def __init__(
        self,
        status_code: int = 200,
        lines: list[str] | None = None,
        hold: asyncio.Event | None = None,
    ) -> None:
        self.status_code = status_code
        self._lines = lines or []
        self._hold = hold

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    async def aiter_lines(self) -> AsyncIterator[str]:
        for line in self._lines:
            yield line
        if self._hold is not None:
            await self._hold.wait()


class FakeStreamHttp:
    """Scripted push endpoint; each connection attempt consumes one outcome.

    Once the script runs out every attempt is refused.
    """

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.params: list[dict[str, Any] | None] = []

    @property
    def attempts(self) -> int:
        return len(self.params)

    @asynccontextmanager
    async def stream(self, path: str, params: dict[str, Any] | None = None):
        self.params.append(params)
        outcome = self.outcomes.pop(0) if self.outcomes else httpx.ConnectError("refused")
        if isinstance(outcome, Exception):
            raise outcome
        yield outcome


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()

"""
Live workload counters with increase alerts.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from leadsync_runtime.events import call_handler
from leadsync_runtime.notifications import AlertHandler
from leadsync_runtime.types import AlertEvent, PresenceCounters

if TYPE_CHECKING:
    from leadsync_runtime.client import _WorkloadApi

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 10_000


def waiting_alert(delta: int) -> AlertEvent:
    plural = "s" if delta > 1 else ""
    return AlertEvent(
        title=f"New DM{plural}",
        body=f"You have {delta} new DM{plural} waiting for a response.",
        delta=delta,
        tag="copilot-dm",
        source="presence",
    )


class PresenceCounterTracker:
    """Polls the live workload and alerts when the waiting count grows.

    The first successful tick only records a baseline. After that, each
    increase of ``waiting`` produces exactly one alert carrying the delta;
    a failed tick keeps the previous baseline.
    """

    def __init__(
        self,
        api: _WorkloadApi,
        *,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._api = api
        self._interval = interval_ms / 1000.0
        self._sleep = sleep

        self._counters = PresenceCounters()
        self._prev_waiting: int | None = None
        self._alert_handlers: list[AlertHandler] = []
        self._generation = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def counters(self) -> PresenceCounters:
        return self._counters.model_copy()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_alert(self, handler: AlertHandler) -> None:
        self._alert_handlers.append(handler)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._poll_loop(self._generation))

    async def stop(self) -> None:
        """Stop polling; the next start begins with a fresh baseline."""
        self._generation += 1
        self._prev_waiting = None
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def _poll_loop(self, generation: int) -> None:
        while self._generation == generation:
            await self.tick()
            if self._generation != generation:
                return
            await self._sleep(self._interval)

    async def tick(self) -> AlertEvent | None:
        """Fetch the workload once; returns the alert raised, if any."""
        generation = self._generation
        try:
            conversations = await self._api.active_conversations()
        except Exception as e:
            logger.debug("Workload poll failed: %s", e)
            return None
        if self._generation != generation:
            return None

        waiting = sum(1 for c in conversations if c.needs_response)
        self._counters = PresenceCounters(active=len(conversations), waiting=waiting)
        previous, self._prev_waiting = self._prev_waiting, waiting

        if previous is None or waiting <= previous:
            return None

        alert = waiting_alert(waiting - previous)
        logger.info("Waiting conversations rose by %d", alert.delta)
        for handler in list(self._alert_handlers):
            if self._generation != generation:
                break
            await call_handler(handler, alert)
        return alert

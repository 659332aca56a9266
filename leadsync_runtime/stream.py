"""
Push channel client.

Keeps at most one long-lived ``GET /api/sse/events`` response open,
parses each line into a :class:`~leadsync_runtime.types.StreamEvent` and
hands it to the :class:`~leadsync_runtime.events.EventManager`. Dropped
connections are retried forever with :class:`ReconnectionPolicy` backoff,
and a fresh auth token is fetched before every attempt.

Usage::

    stream = EventStreamClient(http, token_provider=get_token)
    stream.events.subscribe("new_message", on_message)
    stream.on_status(lambda connected: print("live" if connected else "offline"))
    stream.start()
    ...
    await stream.stop()
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from leadsync_runtime.auth import TokenProvider, fetch_token
from leadsync_runtime.errors import StreamError
from leadsync_runtime.events import EventManager, StatusHandler, call_handler
from leadsync_runtime.reconnect import Outcome, ReconnectionPolicy
from leadsync_runtime.types import ConnectionState, StreamEvent

if TYPE_CHECKING:
    from leadsync_runtime.client import _HttpClient

logger = logging.getLogger(__name__)

STREAM_PATH = "/api/sse/events"
DEFAULT_TOKEN_RETRY_MS = 5000

Sleep = Callable[[float], Awaitable[Any]]

_SSE_FIELD_PREFIXES = ("event:", "id:", "retry:")


def parse_stream_line(line: str) -> StreamEvent | None:
    """Parse one line of the push channel; ``None`` for anything that is not an event.

    Plain JSON lines and SSE ``data:`` lines are both accepted.
    """
    line = line.strip()
    if not line or line.startswith(":") or line.startswith(_SSE_FIELD_PREFIXES):
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
    try:
        data = json.loads(line)
        if not isinstance(data, dict):
            return None
        return StreamEvent.model_validate(data)
    except ValueError:
        logger.debug("Ignoring malformed stream payload")
        return None


class EventStreamClient:
    """Owns one push connection and its reconnect schedule."""

    def __init__(
        self,
        http: _HttpClient,
        token_provider: TokenProvider,
        *,
        events: EventManager | None = None,
        policy: ReconnectionPolicy | None = None,
        token_retry_ms: int = DEFAULT_TOKEN_RETRY_MS,
        path: str = STREAM_PATH,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._http = http
        self._token_provider = token_provider
        self.events = events if events is not None else EventManager()
        self._policy = policy or ReconnectionPolicy()
        self._token_retry_ms = token_retry_ms
        self._path = path
        self._sleep = sleep

        self._status_handlers: list[StatusHandler] = []
        self._state = ConnectionState.IDLE
        self._connected = False
        self._delay_ms = self._policy.floor_ms
        self._generation = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        """Whether the push channel is currently open."""
        return self._connected

    @property
    def next_delay_ms(self) -> int:
        """Delay that the next failed attempt will wait before reconnecting."""
        return self._delay_ms

    def on_status(self, handler: StatusHandler) -> None:
        """Register a callback for connected/disconnected transitions."""
        self._status_handlers.append(handler)

    def off_status(self, handler: StatusHandler) -> None:
        self._status_handlers = [h for h in self._status_handlers if h is not handler]

    # ---- Lifecycle ----

    def start(self) -> None:
        """Begin connecting. Calling it while already running does nothing.

        Must be called with a running event loop.
        """
        if self._task is not None and not self._task.done():
            return
        self._generation += 1
        self._state = ConnectionState.CONNECTING
        self._task = asyncio.create_task(self._run(self._generation))

    async def stop(self) -> None:
        """Close the connection and cancel any pending reconnect.

        Idempotent. Nothing is mutated or delivered after this returns,
        including by callbacks that were already in flight.
        """
        task, self._task = self._task, None
        self._generation += 1
        self._state = ConnectionState.IDLE
        self._delay_ms = self._policy.floor_ms
        was_connected, self._connected = self._connected, False

        if task is not None and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if was_connected:
            logger.info("Event stream stopped")
            for handler in list(self._status_handlers):
                await call_handler(handler, False)

    # ---- Internal ----

    def _is_live(self, generation: int) -> bool:
        return generation == self._generation

    async def _run(self, generation: int) -> None:
        while self._is_live(generation):
            token = await self._fetch_token()
            if not self._is_live(generation):
                return
            if token is None:
                logger.debug("No auth token yet, retrying stream in %dms", self._token_retry_ms)
                await self._sleep(self._token_retry_ms / 1000.0)
                continue

            try:
                await self._consume(token, generation)
                if self._is_live(generation):
                    logger.info("Event stream closed by server")
            except Exception as e:
                logger.debug("Event stream failed: %s", e)

            if not self._is_live(generation):
                return

            delay = self._delay_ms
            self._delay_ms = self._policy.next_delay(delay, Outcome.FAILURE)
            self._state = ConnectionState.BACKOFF
            await self._set_connected(False, generation)
            logger.info("Reconnecting event stream in %dms", delay)
            await self._sleep(delay / 1000.0)
            if not self._is_live(generation):
                return
            self._state = ConnectionState.CONNECTING

    async def _fetch_token(self) -> str | None:
        try:
            return await fetch_token(self._token_provider)
        except Exception:
            logger.warning("Auth token provider failed", exc_info=True)
            return None

    async def _consume(self, token: str, generation: int) -> None:
        async with self._http.stream(self._path, params={"token": token}) as response:
            if not response.is_success:
                raise StreamError(response.status_code)
            if not self._is_live(generation):
                return

            self._state = ConnectionState.CONNECTED
            self._delay_ms = self._policy.next_delay(self._delay_ms, Outcome.SUCCESS)
            logger.info("Event stream connected")
            await self._set_connected(True, generation)

            async for line in response.aiter_lines():
                if not self._is_live(generation):
                    return
                event = parse_stream_line(line)
                if event is None:
                    continue
                await self.events.dispatch(event, lambda: self._is_live(generation))

    async def _set_connected(self, value: bool, generation: int) -> None:
        if self._connected == value:
            return
        self._connected = value
        for handler in list(self._status_handlers):
            if not self._is_live(generation):
                return
            await call_handler(handler, value)

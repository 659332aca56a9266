"""
Event subscription system for the LeadSync runtime.

Provides a callback-based subscription API for events delivered over
the push channel. Handlers may be plain functions or coroutines.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Coroutine

from leadsync_runtime.types import StreamEvent

logger = logging.getLogger(__name__)

# Type alias for event handlers
EventHandler = Callable[[StreamEvent], Coroutine[Any, Any, None] | None]
StatusHandler = Callable[[bool], Coroutine[Any, Any, None] | None]


async def call_handler(handler: Callable[..., Any], *args: Any) -> None:
    """Invoke a sync or async handler, logging instead of raising."""
    try:
        result = handler(*args)
        if asyncio.iscoroutine(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Error in handler %r", handler)


class EventManager:
    """Routes stream events to subscribed handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._wildcard_handlers: list[EventHandler] = []

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for a specific event type."""
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Register a handler for all event types."""
        self._wildcard_handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Remove a handler (or all handlers) for an event type.

        ``event_type="*"`` addresses the wildcard handlers.
        """
        if event_type == "*":
            if handler is None:
                self._wildcard_handlers.clear()
            else:
                self._wildcard_handlers = [h for h in self._wildcard_handlers if h is not handler]
            return
        if handler is None:
            self._handlers.pop(event_type, None)
        else:
            handlers = self._handlers.get(event_type, [])
            self._handlers[event_type] = [h for h in handlers if h is not handler]

    def clear(self) -> None:
        self._handlers.clear()
        self._wildcard_handlers.clear()

    async def dispatch(
        self, event: StreamEvent, is_live: Callable[[], bool] | None = None
    ) -> None:
        """Dispatch an event to all matching handlers.

        Delivery stops as soon as ``is_live`` reports the owner was torn down.
        """
        handlers = list(self._handlers.get(event.type, []))
        handlers.extend(self._wildcard_handlers)

        for handler in handlers:
            if is_live is not None and not is_live():
                return
            await call_handler(handler, event)

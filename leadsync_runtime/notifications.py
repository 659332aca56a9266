"""
Notification state reconciled from two unordered sources: periodic
snapshot polls and notifications pushed over the event stream.

Snapshots replace the item list wholesale; pushed notifications are
merged by ``id`` (last write wins). A server-declared unread count always
takes precedence over one derived from the visible page, since the full
unread set can be larger than a page.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Coroutine

from leadsync_runtime.errors import NoticeSink, error_notice, publish_notice
from leadsync_runtime.events import call_handler
from leadsync_runtime.types import AlertEvent, Notification, NotificationState, StreamEvent

if TYPE_CHECKING:
    from leadsync_runtime.client import NotificationPage, _NotificationsApi

logger = logging.getLogger(__name__)

AlertHandler = Callable[[AlertEvent], Coroutine[Any, Any, None] | None]

DEFAULT_POLL_INTERVAL_MS = 30_000
DEFAULT_PAGE_SIZE = 20

# Stream events that change the unread set without carrying the notification.
_REFRESH_EVENT_TYPES = frozenset({"new_message", "dm_assigned", "new_lead"})


class NotificationStateStore:
    """In-memory notification list and unread counter."""

    def __init__(
        self,
        api: _NotificationsApi,
        *,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        page_size: int = DEFAULT_PAGE_SIZE,
        notices: NoticeSink | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._api = api
        self._poll_interval = poll_interval_ms / 1000.0
        self._page_size = page_size
        self._notices = notices
        self._sleep = sleep

        self._items: list[Notification] = []
        self._unread_count = 0
        self._alert_handlers: list[AlertHandler] = []
        self._generation = 0
        self._poll_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> NotificationState:
        return NotificationState(items=list(self._items), unread_count=self._unread_count)

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return self._unread_count

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def on_alert(self, handler: AlertHandler) -> None:
        """Register a callback fired when a new unread notification is pushed."""
        self._alert_handlers.append(handler)

    # ---- Lifecycle ----

    def start(self) -> None:
        """Fetch immediately, then re-fetch a snapshot every poll interval."""
        if self.running:
            return
        self._poll_task = asyncio.create_task(self._poll_loop(self._generation))

    async def stop(self) -> None:
        """Stop polling and discard every in-flight result. Idempotent."""
        self._generation += 1
        tasks = [t for t in (self._poll_task, *self._background) if t is not None]
        self._poll_task = None
        self._background.clear()
        current = asyncio.current_task()
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _poll_loop(self, generation: int) -> None:
        await self.fetch_snapshot()
        await self.fetch_unread_count()
        while self._generation == generation:
            await self._sleep(self._poll_interval)
            if self._generation != generation:
                return
            await self.fetch_snapshot()

    # ---- Reads ----

    async def fetch_snapshot(self, limit: int | None = None, offset: int = 0) -> bool:
        """Replace the item list with one page from the server.

        Failures are silent and leave the state untouched. Returns whether
        the snapshot was applied.
        """
        return await self._load(limit, offset, surface_errors=False)

    async def refresh(self) -> bool:
        """User-initiated snapshot; a failure is reported as a notice."""
        return await self._load(None, 0, surface_errors=True)

    async def fetch_unread_count(self) -> bool:
        """Update only the unread counter from the dedicated endpoint."""
        generation = self._generation
        try:
            count = await self._api.unread_count()
        except Exception as e:
            logger.debug("Unread count poll failed: %s", e)
            return False
        # No recognised count field: keep the current value instead of zeroing it.
        if self._generation != generation or count is None:
            return False
        self._unread_count = max(0, count)
        return True

    async def _load(self, limit: int | None, offset: int, surface_errors: bool) -> bool:
        generation = self._generation
        try:
            page = await self._api.list(limit=limit or self._page_size, offset=offset)
        except Exception as e:
            if surface_errors:
                publish_notice(self._notices, error_notice(e))
            else:
                logger.debug("Notification poll failed: %s", e)
            return False
        if self._generation != generation:
            return False
        self._apply_page(page)
        return True

    def _apply_page(self, page: NotificationPage) -> None:
        self._items = list(page.items)
        if page.unread_count is not None:
            self._unread_count = max(0, page.unread_count)
        else:
            self._unread_count = sum(1 for n in self._items if not n.read)

    # ---- Mutations ----

    async def mark_read(self, notification_id: str) -> bool:
        """Optimistically mark one notification read, then tell the server.

        The local change is kept even if the server call fails; the next
        snapshot reconciles. Returns whether the server accepted it.
        """
        for index, item in enumerate(self._items):
            if item.id == notification_id:
                if not item.read:
                    self._items[index] = item.model_copy(update={"read": True})
                    self._unread_count = max(0, self._unread_count - 1)
                break

        try:
            await self._api.mark_read(notification_id)
        except Exception as e:
            logger.warning("Failed to mark notification %s read: %s", notification_id, e)
            publish_notice(self._notices, error_notice(e))
            return False
        return True

    async def mark_all_read(self) -> bool:
        """Optimistically mark everything read, then tell the server."""
        self._items = [
            item if item.read else item.model_copy(update={"read": True}) for item in self._items
        ]
        self._unread_count = 0

        try:
            await self._api.mark_all_read()
        except Exception as e:
            logger.warning("Failed to mark all notifications read: %s", e)
            publish_notice(self._notices, error_notice(e))
            return False
        return True

    def merge(self, notification: Notification) -> bool:
        """Merge a pushed notification by id. Returns True if it was new.

        Known ids are updated in place, new ones are prepended.
        """
        for index, existing in enumerate(self._items):
            if existing.id == notification.id:
                self._items[index] = notification
                if existing.read and not notification.read:
                    self._unread_count += 1
                elif not existing.read and notification.read:
                    self._unread_count = max(0, self._unread_count - 1)
                return False

        self._items.insert(0, notification)
        if not notification.read:
            self._unread_count += 1
        return True

    # ---- Push channel ----

    async def handle_event(self, event: StreamEvent) -> None:
        """Consume a stream event."""
        notification = event.notification
        if notification is not None:
            if self.merge(notification) and not notification.read:
                await self._emit_alert(
                    AlertEvent(
                        title=notification.title or "New notification",
                        body=notification.body,
                        tag="notification",
                        source="notifications",
                    )
                )
            return

        if event.type in _REFRESH_EVENT_TYPES:
            task = asyncio.create_task(self.fetch_unread_count())
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _emit_alert(self, alert: AlertEvent) -> None:
        generation = self._generation
        for handler in list(self._alert_handlers):
            if self._generation != generation:
                return
            await call_handler(handler, alert)

"""
LeadSync runtime: Python client.

Async HTTP client for the lead-engagement dashboard API, using ``httpx``
for both REST calls and the long-lived push channel.

Usage::

    from leadsync_runtime import LeadSyncRuntime, RuntimeConfig

    runtime = LeadSyncRuntime(
        RuntimeConfig(base_url="https://app.example.com"),
        token_provider=lambda: session.token,
    )
    runtime.start()
    # ... read runtime.notifications.state, runtime.presence.counters
    await runtime.stop()
"""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import AbstractAsyncContextManager
from typing import Any, Awaitable, Callable
from urllib.parse import quote as url_quote

import httpx
from pydantic import BaseModel

from leadsync_runtime.alerts import AlertDispatcher, DesktopNotifier, MemoryPreferenceStore, PreferenceStore, TonePlayer
from leadsync_runtime.auth import TokenProvider, fetch_token
from leadsync_runtime.errors import ApiError, NoticeSink
from leadsync_runtime.events import EventHandler, EventManager, StatusHandler
from leadsync_runtime.notifications import NotificationStateStore
from leadsync_runtime.presence import PresenceCounterTracker
from leadsync_runtime.reconnect import ReconnectionPolicy
from leadsync_runtime.stream import EventStreamClient
from leadsync_runtime.types import (
    ActiveConversation,
    AlertEvent,
    Notification,
    RuntimeConfig,
    parse_listing,
)

logger = logging.getLogger(__name__)


class _HttpClient:
    """Thin wrapper around httpx for dashboard API requests."""

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        company_id: str | None = None,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._company_id = company_id
        self._timeout = timeout
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    async def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        token = await fetch_token(self._token_provider)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if self._company_id:
            headers["x-company-id"] = self._company_id
        return headers

    async def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        _retries: int = 4,
        _attempt: int = 0,
    ) -> Any:
        """Make an authenticated request to the API.

        The auth token is read fresh for every request. Automatically
        retries on 429 (rate limited) with exponential backoff: up to 4
        retries with 5s → 10s → 20s → 40s delays (jittered).
        """
        response = await self._client.request(
            method=method,
            url=path,
            json=body,
            params=params,
            headers=await self._headers(),
        )

        if response.status_code == 429 and _retries > 0:
            try:
                retry_after = float(response.headers.get("retry-after", "0"))
            except ValueError:
                retry_after = 0.0
            exp_delay = min(5 * (2 ** _attempt), 60)
            delay = max(retry_after, exp_delay)
            # ±20% jitter
            delay *= 0.8 + random.random() * 0.4
            logger.info(
                "Rate limited (429), retrying in %.1fs (attempt %d/%d)",
                delay, _attempt + 1, _attempt + _retries,
            )
            await self._sleep(delay)
            return await self.request(method, path, body, params, _retries - 1, _attempt + 1)

        # The raw response body never goes into the exception message.
        if response.status_code >= 400:
            details = None
            try:
                err_data = response.json()
                details = err_data.get("details") if isinstance(err_data, dict) else None
                raw = err_data.get("error", err_data.get("message", "Request failed"))
                if isinstance(raw, dict):
                    raw = raw.get("message", "Request failed")
                err_msg = raw if isinstance(raw, str) else "Request failed"
            except Exception:
                err_msg = "Request failed"
            raise ApiError(
                f"API request failed ({response.status_code}): {err_msg}",
                request=response.request,
                response=response,
                details=details,
            )

        if response.status_code == 204 or not response.content:
            return {}

        return response.json()

    def stream(
        self, path: str, params: dict[str, Any] | None = None
    ) -> AbstractAsyncContextManager[httpx.Response]:
        """Open a streaming GET; the read timeout is disabled for long-lived responses."""
        return self._client.stream(
            "GET",
            path,
            params=params,
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(self._timeout, read=None),
        )

    async def close(self) -> None:
        await self._client.aclose()


# ============================================================
#  Sub-managers
# ============================================================


class NotificationPage(BaseModel):
    """One page of the notification listing."""

    items: list[Notification] = []
    unread_count: int | None = None


class _NotificationsApi:
    """Notification endpoints."""

    def __init__(self, http: _HttpClient) -> None:
        self._http = http

    async def list(self, limit: int = 20, offset: int = 0) -> NotificationPage:
        """Fetch one page of notifications, most recent first.

        Accepts ``{notifications, unreadCount}`` as well as a bare array.
        """
        data = await self._http.request(
            "GET", "/api/notifications", params={"limit": limit, "offset": offset}
        )
        items = [Notification.model_validate(n) for n in parse_listing(data, "notifications")]
        unread = data.get("unreadCount") if isinstance(data, dict) else None
        if isinstance(unread, bool) or not isinstance(unread, int):
            unread = None
        return NotificationPage(items=items, unread_count=unread)

    async def unread_count(self) -> int | None:
        """Server unread count; ``count`` and ``unread_count`` are both accepted."""
        data = await self._http.request("GET", "/api/notifications/unread-count")
        if not isinstance(data, dict):
            return None
        for key in ("count", "unread_count"):
            value = data.get(key)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
        return None

    async def mark_read(self, notification_id: str) -> dict[str, Any]:
        return await self._http.request(
            "POST", f"/api/notifications/{url_quote(notification_id, safe='')}/read"
        )

    async def mark_all_read(self) -> dict[str, Any]:
        return await self._http.request("POST", "/api/notifications/read-all")


class _WorkloadApi:
    """Live workload endpoint."""

    def __init__(self, http: _HttpClient) -> None:
        self._http = http

    async def active_conversations(self, sort: str = "recent") -> list[ActiveConversation]:
        data = await self._http.request("GET", "/api/workload/active", params={"sort": sort})
        dms = data.get("dms") if isinstance(data, dict) else None
        if not isinstance(dms, list):
            return []
        return [ActiveConversation.model_validate(d) for d in dms if isinstance(d, dict)]


# ============================================================
#  Main Runtime Client
# ============================================================


class LeadSyncRuntime:
    """
    The real-time synchronization core of the dashboard.

    Owns the push channel, the notification store, the workload tracker
    and the alert dispatcher, and ties their lifecycles to one
    ``start()``/``stop()`` span.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        token_provider: TokenProvider,
        *,
        preferences: PreferenceStore | None = None,
        tone_player: TonePlayer | None = None,
        desktop_notifier: DesktopNotifier | None = None,
        notices: NoticeSink | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._http = _HttpClient(
            config.base_url,
            token_provider,
            company_id=config.company_id,
            timeout=config.request_timeout_s,
            sleep=sleep,
        )
        self._events = EventManager()

        self.stream = EventStreamClient(
            self._http,
            token_provider,
            events=self._events,
            policy=ReconnectionPolicy.from_config(config.reconnect),
            token_retry_ms=config.token_retry_ms,
            sleep=sleep,
        )
        self.notifications = NotificationStateStore(
            _NotificationsApi(self._http),
            poll_interval_ms=config.notification_poll_ms,
            page_size=config.notification_page_size,
            notices=notices,
            sleep=sleep,
        )
        self.presence = PresenceCounterTracker(
            _WorkloadApi(self._http),
            interval_ms=config.presence_poll_ms,
            sleep=sleep,
        )
        self.alerts = AlertDispatcher(
            preferences if preferences is not None else MemoryPreferenceStore(),
            tone_player=tone_player,
            desktop_notifier=desktop_notifier,
        )

        self._events.subscribe_all(self.notifications.handle_event)
        self.notifications.on_alert(self._on_alert)
        self.presence.on_alert(self._on_alert)
        self._started = False

    @property
    def is_connected(self) -> bool:
        """Whether the push channel is currently open."""
        return self.stream.connected

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Start the push channel and both poll cycles. Idempotent."""
        if self._started:
            return
        self._started = True
        self.alerts.request_permission()
        self.stream.start()
        self.notifications.start()
        self.presence.start()
        logger.info("LeadSync runtime started (%s)", self._http.base_url)

    async def stop(self) -> None:
        """Tear everything down; safe to call repeatedly."""
        await self.stream.stop()
        await self.notifications.stop()
        await self.presence.stop()
        if self._started:
            self._started = False
            logger.info("LeadSync runtime stopped")

    async def close(self) -> None:
        """Stop and release the HTTP connection pool."""
        await self.stop()
        await self._http.close()

    # ---- Event shortcuts ----

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to a specific stream event type (``"*"`` for all)."""
        if event_type == "*":
            self._events.subscribe_all(handler)
        else:
            self._events.subscribe(event_type, handler)

    def off(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Unsubscribe from a stream event type.

        The notification store's own subscription survives ``off("*")``.
        """
        self._events.unsubscribe(event_type, handler)
        if event_type == "*" and handler is None:
            self._events.subscribe_all(self.notifications.handle_event)

    def on_status(self, handler: StatusHandler) -> None:
        """Subscribe to push channel connected/disconnected transitions."""
        self.stream.on_status(handler)

    # ---- Internal ----

    def _on_alert(self, alert: AlertEvent) -> None:
        self.alerts.dispatch(alert)

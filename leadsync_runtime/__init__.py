"""
LeadSync real-time runtime for Python.

Keeps a lead-engagement dashboard in sync with its server: a live push
channel with backoff reconnection, a notification store reconciled from
pushes and snapshot polls, live workload counters, and preference-gated
alerts.

Example::

    from leadsync_runtime import LeadSyncRuntime, RuntimeConfig

    runtime = LeadSyncRuntime(
        RuntimeConfig(base_url="https://app.example.com"),
        token_provider=lambda: store.get("auth_token"),
    )

    runtime.on("new_message", lambda event: print(event.preview))
    runtime.start()

    print(runtime.notifications.unread_count)
    await runtime.notifications.mark_all_read()

    # Clean up
    await runtime.close()
"""

from leadsync_runtime.client import LeadSyncRuntime, NotificationPage
from leadsync_runtime.alerts import (
    AlertDispatcher,
    JsonFilePreferenceStore,
    MemoryPreferenceStore,
    BROWSER_PREFERENCE_KEY,
    SOUND_PREFERENCE_KEY,
)
from leadsync_runtime.errors import (
    LeadSyncError,
    ApiError,
    StreamError,
    get_error_message,
    install_exception_handler,
)
from leadsync_runtime.events import EventManager
from leadsync_runtime.notifications import NotificationStateStore
from leadsync_runtime.presence import PresenceCounterTracker
from leadsync_runtime.reconnect import Outcome, ReconnectionPolicy
from leadsync_runtime.stream import EventStreamClient, parse_stream_line
from leadsync_runtime.types import (
    RuntimeConfig,
    ReconnectConfig,
    ConnectionState,
    StreamEvent,
    Notification,
    NotificationState,
    PresenceCounters,
    AlertEvent,
    Tone,
    Notice,
    DispatchResult,
)

__all__ = [
    "LeadSyncRuntime",
    "NotificationPage",
    "AlertDispatcher",
    "JsonFilePreferenceStore",
    "MemoryPreferenceStore",
    "BROWSER_PREFERENCE_KEY",
    "SOUND_PREFERENCE_KEY",
    "LeadSyncError",
    "ApiError",
    "StreamError",
    "get_error_message",
    "install_exception_handler",
    "EventManager",
    "NotificationStateStore",
    "PresenceCounterTracker",
    "Outcome",
    "ReconnectionPolicy",
    "EventStreamClient",
    "parse_stream_line",
    "RuntimeConfig",
    "ReconnectConfig",
    "ConnectionState",
    "StreamEvent",
    "Notification",
    "NotificationState",
    "PresenceCounters",
    "AlertEvent",
    "Tone",
    "Notice",
    "DispatchResult",
]

__version__ = "0.1.0"

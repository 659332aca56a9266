"""
Pydantic models for the LeadSync real-time runtime.

Wire models accept the dashboard API's camelCase field names and expose
Pythonic snake_case attributes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


# ============================================================
#  Configuration
# ============================================================


class ReconnectConfig(BaseModel):
    """Push-channel reconnection settings."""

    initial_delay_ms: int = Field(1000, gt=0)
    max_delay_ms: int = Field(30000, gt=0)


class RuntimeConfig(BaseModel):
    """Configuration for connecting to the dashboard API."""

    base_url: str
    company_id: str | None = None
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    token_retry_ms: int = 5000
    notification_poll_ms: int = 30000
    notification_page_size: int = 20
    presence_poll_ms: int = 10000
    request_timeout_s: float = 30.0


# ============================================================
#  Push channel
# ============================================================


class ConnectionState(str, Enum):
    """Lifecycle of the push connection."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"


StreamEventType = Literal[
    "connected",
    "new_message",
    "suggestion_ready",
    "dm_assigned",
    "lead_updated",
    "new_lead",
]


class Notification(BaseModel):
    """A user notification. Identity is ``id``."""

    id: str
    title: str = ""
    body: str = ""
    url: str | None = None
    read: bool = False
    created_at: str = Field("", alias="createdAt")

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("title", "body", "created_at", mode="before")
    @classmethod
    def _null_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("read", mode="before")
    @classmethod
    def _null_to_unread(cls, value: Any) -> Any:
        return False if value is None else value


class StreamEvent(BaseModel):
    """An event delivered over the push channel.

    Supported event types:
    - connected: first event after a successful handshake
    - new_message: inbound lead message (``preview`` carries a snippet)
    - suggestion_ready: AI reply suggestion available (``suggestion_id``)
    - dm_assigned: conversation assigned to a team member
    - lead_updated: lead record changed
    - new_lead: a lead was created
    """

    type: StreamEventType
    lead_id: str | None = Field(None, alias="leadId")
    conversation_id: str | None = Field(None, alias="conversationId")
    preview: str | None = None
    content: str | None = None
    lead_name: str | None = Field(None, alias="leadName")
    assigned_to: str | None = Field(None, alias="assignedTo")
    assigned_name: str | None = Field(None, alias="assignedName")
    is_new_lead: bool | None = Field(None, alias="isNewLead")
    suggestion_id: str | None = Field(None, alias="suggestionId")
    dm_status: str | None = None
    updated_by: str | None = Field(None, alias="updatedBy")
    user_id: str | None = Field(None, alias="userId")
    company_id: str | None = Field(None, alias="companyId")
    timestamp: str | None = None
    notification: Notification | None = None

    model_config = {"populate_by_name": True, "extra": "allow", "frozen": True}


# ============================================================
#  Derived state
# ============================================================


class NotificationState(BaseModel):
    """Snapshot of the notification store."""

    items: list[Notification] = []
    unread_count: int = Field(0, ge=0)


class PresenceCounters(BaseModel):
    """Live workload counters."""

    active: int = 0
    waiting: int = 0


class ActiveConversation(BaseModel):
    """An entry of the live workload listing."""

    id: str | int | None = None
    # Null means the server has not flagged the conversation.
    needs_response: bool | None = None

    model_config = {"extra": "allow"}


# ============================================================
#  Alerts & notices
# ============================================================


class AlertEvent(BaseModel):
    """A request to alert the user."""

    title: str
    body: str
    delta: int = 1
    tag: str = "copilot-dm"
    source: Literal["presence", "notifications"] = "presence"


class Tone(BaseModel):
    """Alert tone played by the tone player."""

    frequency_hz: float = 880.0
    waveform: str = "sine"
    gain: float = 0.15
    duration_s: float = 0.3


class Notice(BaseModel):
    """A transient, human-readable message for the user."""

    title: str
    description: str
    variant: Literal["default", "destructive"] = "destructive"


class DispatchResult(BaseModel):
    """What an alert dispatch actually did."""

    tone_played: bool = False
    desktop_raised: bool = False


def parse_listing(data: Any, key: str) -> list[Any]:
    """Return ``data[key]`` if it is a list, ``data`` if it is a bare list, else []."""
    if isinstance(data, dict) and isinstance(data.get(key), list):
        return data[key]
    if isinstance(data, list):
        return data
    return []

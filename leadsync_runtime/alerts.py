"""
User-facing alerts: a short tone and/or a desktop notification.

Both outputs are gated by persisted preference strings that are read at
alert time. The two defaults differ:

- desktop notifications only when ``notif_browser_enabled`` is exactly
  ``"true"`` (unset or anything else means off);
- the tone unless ``notif_sound_enabled`` is exactly ``"false"`` (unset or
  anything else means on).
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

from leadsync_runtime.types import AlertEvent, DispatchResult, Tone

logger = logging.getLogger(__name__)

SOUND_PREFERENCE_KEY = "notif_sound_enabled"
BROWSER_PREFERENCE_KEY = "notif_browser_enabled"

TonePlayer = Callable[[Tone], Any]


class PreferenceStore(Protocol):
    def get(self, key: str) -> str | None: ...


class DesktopNotifier(Protocol):
    def notify(self, title: str, body: str, tag: str) -> Any: ...


class MemoryPreferenceStore:
    """Preferences held in a dict."""

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(values or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFilePreferenceStore:
    """Preferences kept as a flat JSON object on disk.

    The file is re-read on every lookup so changes made by another process
    take effect at the next alert. A missing or unreadable file behaves as
    if every key were unset; non-string values are treated as unset too.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        logger.info("Preference %s saved to %s", key, self.path)


class AlertDispatcher:
    """Turns an :class:`AlertEvent` into a tone and/or desktop notification."""

    def __init__(
        self,
        preferences: PreferenceStore,
        *,
        tone_player: TonePlayer | None = None,
        desktop_notifier: DesktopNotifier | None = None,
        tone: Tone | None = None,
    ) -> None:
        self._preferences = preferences
        self._tone_player = tone_player
        self._notifier = desktop_notifier
        self._tone = tone or Tone()

    def _read(self, key: str) -> str | None:
        try:
            return self._preferences.get(key)
        except Exception:
            logger.warning("Could not read preference %s", key, exc_info=True)
            return None

    def desktop_enabled(self) -> bool:
        return self._read(BROWSER_PREFERENCE_KEY) == "true"

    def sound_enabled(self) -> bool:
        return self._read(SOUND_PREFERENCE_KEY) != "false"

    def request_permission(self) -> bool:
        """Ask the notifier for permission if desktop notifications are on."""
        request = getattr(self._notifier, "request_permission", None)
        if not self.desktop_enabled() or request is None:
            return False
        try:
            request()
        except Exception:
            logger.debug("Notification permission request failed", exc_info=True)
            return False
        return True

    def dispatch(self, alert: AlertEvent) -> DispatchResult:
        desktop_raised = False
        if self._notifier is not None and self.desktop_enabled():
            try:
                self._notifier.notify(alert.title, alert.body, alert.tag)
                desktop_raised = True
            except Exception:
                logger.debug("Desktop notification not available", exc_info=True)

        tone_played = False
        if self._tone_player is not None and self.sound_enabled():
            try:
                self._tone_player(self._tone)
                tone_played = True
            except Exception:
                logger.debug("Audio not available", exc_info=True)

        return DispatchResult(tone_played=tone_played, desktop_raised=desktop_raised)

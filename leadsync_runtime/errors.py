"""
Error types and user-facing notice helpers.

Background synchronization failures never reach the user; only
user-initiated operations produce a :class:`~leadsync_runtime.types.Notice`.
Anything that escapes a task is caught by the loop exception handler
installed with :func:`install_exception_handler`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import httpx

from leadsync_runtime.types import Notice

logger = logging.getLogger(__name__)

NoticeSink = Callable[[Notice], Any]

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


class LeadSyncError(Exception):
    """Base class for runtime errors."""


class ApiError(httpx.HTTPStatusError, LeadSyncError):
    """A non-2xx response from the dashboard API.

    The message is built from the server's ``error``/``message`` field and
    never includes the raw response body.
    """

    def __init__(
        self,
        message: str,
        *,
        request: httpx.Request,
        response: httpx.Response,
        details: Any = None,
    ) -> None:
        super().__init__(message, request=request, response=response)
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return self.response.status_code


class StreamError(LeadSyncError):
    """The push channel handshake was rejected."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Event stream rejected ({status_code})")
        self.status_code = status_code


def get_error_message(error: Any) -> str:
    """Extract a displayable message from any error shape."""
    if not error:
        return "An unexpected error occurred."
    if isinstance(error, str):
        return error

    details = getattr(error, "details", None)
    if isinstance(error, dict):
        details = error.get("details")
    if isinstance(details, dict):
        names = details.get("name")
        if isinstance(names, list) and names:
            return str(names[0])

    for attr in ("message", "error", "detail"):
        value = error.get(attr) if isinstance(error, dict) else getattr(error, attr, None)
        if isinstance(value, str) and value:
            return value

    if isinstance(error, Exception) and str(error):
        return str(error)
    return GENERIC_ERROR_MESSAGE


def error_notice(error: Any, title: str = "Error") -> Notice:
    return Notice(title=title, description=get_error_message(error))


def publish_notice(sink: NoticeSink | None, notice: Notice) -> None:
    """Hand a notice to the sink; a failing sink is logged, not raised."""
    if sink is None:
        logger.warning("%s: %s", notice.title, notice.description)
        return
    try:
        sink(notice)
    except Exception:
        logger.exception("Notice sink failed")


def install_exception_handler(
    loop: asyncio.AbstractEventLoop,
    notices: NoticeSink | None = None,
) -> None:
    """Convert exceptions escaping background tasks into a generic notice.

    The loop keeps running; the error is logged and the user sees a
    transient "unexpected error" message.
    """

    def _handler(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        logger.error(
            "Unhandled error: %s", context.get("message", "unknown"), exc_info=exc
        )
        publish_notice(notices, Notice(title="Error", description=GENERIC_ERROR_MESSAGE))

    loop.set_exception_handler(_handler)

"""
Tests for error message extraction and the loop exception handler.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from leadsync_runtime.errors import (
    GENERIC_ERROR_MESSAGE,
    ApiError,
    error_notice,
    get_error_message,
    install_exception_handler,
    publish_notice,
)
from leadsync_runtime.types import Notice


def _api_error(details: object = None) -> ApiError:
    request = httpx.Request("GET", "http://localhost/api/leads")
    response = httpx.Response(422, request=request)
    return ApiError("API request failed (422): Invalid", request=request, response=response, details=details)


@pytest.mark.parametrize(
    "error, expected",
    [
        (None, "An unexpected error occurred."),
        ("", "An unexpected error occurred."),
        ("plain text", "plain text"),
        ({"details": {"name": ["Name is required"]}}, "Name is required"),
        ({"message": "From message"}, "From message"),
        ({"error": "From error"}, "From error"),
        ({"detail": "From detail"}, "From detail"),
        ({"unrelated": 1}, GENERIC_ERROR_MESSAGE),
        (ValueError("bad value"), "bad value"),
        (RuntimeError(), GENERIC_ERROR_MESSAGE),
    ],
)
def test_get_error_message_shapes(error: object, expected: str) -> None:
    assert get_error_message(error) == expected


def test_api_error_prefers_field_details() -> None:
    err = _api_error({"name": ["Name already taken"]})
    assert get_error_message(err) == "Name already taken"
    assert err.status_code == 422


def test_api_error_falls_back_to_message() -> None:
    assert get_error_message(_api_error()) == "API request failed (422): Invalid"


def test_error_notice() -> None:
    notice = error_notice(ValueError("nope"))
    assert notice == Notice(title="Error", description="nope", variant="destructive")


def test_publish_notice_survives_broken_sink() -> None:
    def broken(notice: Notice) -> None:
        raise RuntimeError("ui gone")

    publish_notice(broken, Notice(title="Error", description="x"))
    publish_notice(None, Notice(title="Error", description="x"))


def test_exception_handler_publishes_generic_notice() -> None:
    notices: list[Notice] = []
    loop = asyncio.new_event_loop()
    try:
        install_exception_handler(loop, notices.append)
        loop.call_exception_handler(
            {"message": "Task exception was never retrieved", "exception": KeyError("secret-id")}
        )
    finally:
        loop.close()

    assert notices == [Notice(title="Error", description=GENERIC_ERROR_MESSAGE)]

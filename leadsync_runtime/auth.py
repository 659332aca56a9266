"""
Auth token access. Tokens are owned and rotated by the host application;
the runtime only ever reads them, fresh, right before they are needed.
"""

from __future__ import annotations

import inspect
from typing import Awaitable, Callable, Union

TokenProvider = Callable[[], Union[str, None, Awaitable[Union[str, None]]]]


async def fetch_token(provider: TokenProvider) -> str | None:
    """Call the provider (sync or async); empty strings count as no token."""
    token = provider()
    if inspect.isawaitable(token):
        token = await token
    return token or None

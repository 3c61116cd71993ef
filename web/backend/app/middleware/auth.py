"""Auth middleware -- FastAPI dependencies guarding the facade.

Supports two ways of presenting a facade key:
1. ``X-API-Key: <key>`` header
2. ``Authorization: Bearer <key>`` header

Keys come from ``BRIDGE_API_KEY`` (comma-separated). With no keys configured
every guarded request is rejected unless ``BRIDGE_ALLOW_ANONYMOUS`` is set.
"""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, Header, Request

from xbridge.bridge import Bridge
from xbridge.errors import AuthError


def get_bridge(request: Request) -> Bridge:
    """Return the Bridge attached to the running application."""
    return request.app.state.bridge


def _matches(candidate: str, keys: list[str]) -> bool:
    return any(hmac.compare_digest(candidate, key) for key in keys)


async def require_facade_credential(
    bridge: Bridge = Depends(get_bridge),
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> None:
    """FastAPI dependency that rejects requests without a valid facade key.

    Raises :class:`AuthError` (rendered as ``401``) otherwise.
    """
    settings = bridge.settings
    if not settings.auth_configured:
        if settings.allow_anonymous:
            return
        raise AuthError("No facade API key is configured")

    if x_api_key and _matches(x_api_key, settings.api_keys):
        return

    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token and _matches(token, settings.api_keys):
            return

    raise AuthError("Missing or invalid API key")

"""Proxy router -- every ``/{groupType}/...`` path, passed through or filtered.

Registered last so the root-level documents and admin routes win.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from xbridge.bridge import Bridge

from web.backend.app.middleware.auth import get_bridge, require_facade_credential
from web.backend.app.routers.registry import facade_base

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"], dependencies=[Depends(require_facade_credential)])

# Seconds between client-disconnect checks while a request is in flight
DISCONNECT_POLL_INTERVAL = 0.5


def _raw_path(request: Request) -> str:
    # keep percent-encoded ids such as %40scope%2Fname intact
    raw = request.scope.get("raw_path")
    if raw:
        return urlsplit(raw.decode("latin-1")).path
    return request.url.path


async def _until_done_or_disconnected(request: Request, work: asyncio.Future):
    """Await *work*, cancelling it if the client goes away first."""
    while True:
        done, _ = await asyncio.wait({work}, timeout=DISCONNECT_POLL_INTERVAL)
        if done:
            return work.result()
        if await request.is_disconnected():
            work.cancel()
            try:
                await work
            except asyncio.CancelledError:
                pass
            logger.info("Client disconnected; abandoned %s", request.url.path)
            return None


async def _proxy(request: Request, bridge: Bridge) -> Response:
    work = asyncio.ensure_future(
        bridge.handle(
            _raw_path(request),
            request.query_params.multi_items(),
            dict(request.headers),
            facade_base(request, bridge),
        )
    )
    result = await _until_done_or_disconnected(request, work)
    if result is None:
        return Response(status_code=499)
    if result.body is None:
        return Response(status_code=result.status_code, headers=result.headers)
    return JSONResponse(content=result.body, status_code=result.status_code, headers=result.headers)


@router.get("/{group_type}", summary="Group collection")
async def group_collection(group_type: str, request: Request, bridge: Bridge = Depends(get_bridge)):
    return await _proxy(request, bridge)


@router.get("/{group_type}/{rest:path}", summary="Anything below a group collection")
async def group_subtree(
    group_type: str,
    rest: str,
    request: Request,
    bridge: Bridge = Depends(get_bridge),
):
    return await _proxy(request, bridge)

"""Admin router -- refresh, reload and per-backend enable/disable."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from xbridge.aggregator.aggregator import Snapshot
from xbridge.bridge import Bridge
from xbridge.config import descriptor_from_dict

from web.backend.app.middleware.auth import get_bridge, require_facade_credential
from web.backend.app.models.api import (
    BackendRegisterRequest,
    BackendToggleResponse,
    FailedBackendResponse,
    RefreshResponse,
)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_facade_credential)],
)


def _refresh_response(snapshot: Snapshot) -> RefreshResponse:
    return RefreshResponse(
        epoch=snapshot.epoch,
        active_backends=list(snapshot.active_sources),
        failed_backends=[
            FailedBackendResponse(group_type=source, error=error)
            for source, error in snapshot.failed_sources
        ],
        consolidated_groups=snapshot.group_types,
    )


@router.post("/refresh", response_model=RefreshResponse, summary="Re-probe every backend")
async def refresh(bridge: Bridge = Depends(get_bridge)):
    return _refresh_response(await bridge.refresh())


@router.post("/reload", response_model=RefreshResponse, summary="Reload backend configuration")
async def reload(bridge: Bridge = Depends(get_bridge)):
    return _refresh_response(await bridge.reload())


@router.post("/backends", response_model=RefreshResponse, status_code=201, summary="Register a backend")
async def register_backend(body: BackendRegisterRequest, bridge: Bridge = Depends(get_bridge)):
    descriptor = descriptor_from_dict(body.model_dump())
    return _refresh_response(await bridge.register(descriptor))


async def _toggle(bridge: Bridge, group_type: str, enabled: bool) -> BackendToggleResponse:
    snapshot = await bridge.set_enabled(group_type, enabled)
    return BackendToggleResponse(
        group_type=group_type,
        enabled=enabled,
        epoch=snapshot.epoch,
        consolidated_groups=snapshot.group_types,
    )


@router.post(
    "/backends/{group_type}/enable",
    response_model=BackendToggleResponse,
    summary="Enable a backend",
)
async def enable_backend(group_type: str, bridge: Bridge = Depends(get_bridge)):
    return await _toggle(bridge, group_type, True)


@router.post(
    "/backends/{group_type}/disable",
    response_model=BackendToggleResponse,
    summary="Disable a backend",
)
async def disable_backend(group_type: str, bridge: Bridge = Depends(get_bridge)):
    return await _toggle(bridge, group_type, False)

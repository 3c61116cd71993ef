"""Registry router -- root-level xRegistry documents and operational views."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from xbridge.bridge import Bridge

from web.backend.app.middleware.auth import get_bridge, require_facade_credential
from web.backend.app.models.api import (
    HealthResponse,
    RegistryEntryResponse,
    StatusResponse,
)

router = APIRouter(tags=["registry"])


def facade_base(request: Request, bridge: Bridge) -> str:
    """Base URL under which the facade is reached by this client."""
    return bridge.facade_base(str(request.base_url))


def _split_inline(values: Optional[list[str]]) -> list[str]:
    return [part for value in values or [] for part in value.split(",")]


@router.get("/", dependencies=[Depends(require_facade_credential)], summary="Registry root")
async def root_document(
    request: Request,
    inline: Optional[list[str]] = Query(None),
    specversion: str = Query("1.0"),
    bridge: Bridge = Depends(get_bridge),
):
    """Consolidated registry root with one ``<plural>url`` per group type."""
    return await bridge.root_document(facade_base(request, bridge), _split_inline(inline), specversion)


@router.get("/model", dependencies=[Depends(require_facade_credential)], summary="Consolidated model")
async def model_document(bridge: Bridge = Depends(get_bridge)):
    return bridge.model_document()


@router.get(
    "/capabilities",
    dependencies=[Depends(require_facade_credential)],
    summary="Consolidated capabilities",
)
async def capabilities_document(bridge: Bridge = Depends(get_bridge)):
    return bridge.capabilities_document()


@router.get(
    "/registries",
    response_model=list[RegistryEntryResponse],
    dependencies=[Depends(require_facade_credential)],
    summary="Configured backends",
)
async def list_registries(bridge: Bridge = Depends(get_bridge)):
    snapshot = bridge.snapshot
    return [
        RegistryEntryResponse(
            group_type=d.group_type,
            url=d.base_url,
            enabled=d.enabled,
            active=d.source_id in snapshot.active_sources,
            plural=snapshot.plural_of(d.group_type) if d.group_type in snapshot.model.groups else "",
            count=snapshot.count_of(d.group_type),
        )
        for d in bridge.descriptors.all()
    ]


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health_check(bridge: Bridge = Depends(get_bridge)):
    """Unauthenticated; ``503`` while no backend is active."""
    health = bridge.health()
    if health["status"] != "healthy":
        return JSONResponse(status_code=503, content=HealthResponse(**health).model_dump())
    return health


@router.get(
    "/status",
    response_model=StatusResponse,
    dependencies=[Depends(require_facade_credential)],
    summary="Per-backend status",
)
async def status(bridge: Bridge = Depends(get_bridge)):
    return bridge.status()

"""Pydantic models for the bridge's own (non-xRegistry) endpoints.

xRegistry documents are passed through as plain JSON; only the operational
surface (health, status, admin) is modelled here.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Health / status
# ---------------------------------------------------------------------------


class FailedBackendResponse(BaseModel):
    group_type: str
    error: str = ""


class HealthResponse(BaseModel):
    """Liveness of the consolidated view."""

    status: str
    timestamp: str
    active_backends: int = 0
    total_backends: int = 0
    consolidated_groups: list[str] = Field(default_factory=list)
    failed_backends: list[FailedBackendResponse] = Field(default_factory=list)
    retry_interval: float = 0


class BackendStatusResponse(BaseModel):
    """Mirrors xbridge.aggregator.aggregator.SourceState plus its descriptor."""

    group_type: str
    url: str
    enabled: bool = True
    active: bool = False
    last_attempt: str = ""
    error: str = ""
    consecutive_failures: int = 0
    groups: list[str] = Field(default_factory=list)


class ConflictResponse(BaseModel):
    group_type: str
    kept_source: str
    rejected_source: str


class StatusResponse(BaseModel):
    timestamp: str
    version: str
    epoch: int
    backends: list[BackendStatusResponse] = Field(default_factory=list)
    group_mappings: dict[str, str] = Field(default_factory=dict)
    conflicts: list[ConflictResponse] = Field(default_factory=list)
    name_indices: int = 0


class RegistryEntryResponse(BaseModel):
    """One configured backend as listed by ``/registries``."""

    group_type: str
    url: str
    enabled: bool
    active: bool
    plural: str = ""
    count: int = 0


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class RefreshResponse(BaseModel):
    epoch: int
    active_backends: list[str] = Field(default_factory=list)
    failed_backends: list[FailedBackendResponse] = Field(default_factory=list)
    consolidated_groups: list[str] = Field(default_factory=list)


class BackendToggleResponse(BaseModel):
    group_type: str
    enabled: bool
    epoch: int
    consolidated_groups: list[str] = Field(default_factory=list)


class BackendRegisterRequest(BaseModel):
    """Runtime registration of an additional backend."""

    group_type: str
    url: str
    api_key: str = ""
    enabled: bool = True
    path_prefix: str | None = None
    case_insensitive_names: bool = False


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    error: str
    message: str = ""
    detail: Any = None

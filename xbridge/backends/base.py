"""Abstract backend adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

from xbridge.descriptors import BackendDescriptor
from xbridge.errors import BridgeError


@dataclass(frozen=True)
class IndexEntry:
    """A name-only collection entry used for phase-1 matching."""

    resource_id: str
    name: str


@dataclass
class UpstreamResponse:
    """A pass-through response from a source."""

    status_code: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


class Backend(ABC):
    """One source, reached through the fixed adapter capability set."""

    def __init__(self, descriptor: BackendDescriptor) -> None:
        self.descriptor = descriptor

    @property
    def source_id(self) -> str:
        return self.descriptor.source_id

    @abstractmethod
    async def get_model(self, headers: Mapping[str, str] | None = None) -> dict:
        """Return the source's model document."""

    @abstractmethod
    async def get_capabilities(self, headers: Mapping[str, str] | None = None) -> dict:
        """Return the source's capabilities document."""

    @abstractmethod
    async def list_collection(
        self,
        path: str,
        headers: Mapping[str, str] | None = None,
    ) -> list[IndexEntry]:
        """Return the name index of the collection at *path* (source-relative)."""

    @abstractmethod
    async def get_resource(
        self,
        path: str,
        params: list[tuple[str, str]] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> UpstreamResponse:
        """Fetch any source-relative *path* unchanged."""

    @abstractmethod
    async def get_resource_metadata(
        self,
        collection_path: str,
        resource_id: str,
        headers: Mapping[str, str] | None = None,
    ) -> dict:
        """Return full metadata for one collection member."""

    async def get_root(self, headers: Mapping[str, str] | None = None) -> dict:
        return {}

    async def check_health(self) -> bool:
        try:
            await self.get_model()
        except BridgeError:
            return False
        return True

    async def aclose(self) -> None:
        return None

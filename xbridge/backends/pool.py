"""Backend pool — one adapter instance per configured source."""

from __future__ import annotations

from typing import Callable

from xbridge.backends.base import Backend
from xbridge.descriptors import BackendDescriptor

BackendFactory = Callable[[BackendDescriptor], Backend]


class BackendPool:
    """Creates adapters lazily and recreates them when a descriptor's
    address or credential changes (e.g. after a configuration reload)."""

    def __init__(self, factory: BackendFactory) -> None:
        self._factory = factory
        self._backends: dict[str, Backend] = {}
        self._retired: list[Backend] = []

    def get(self, descriptor: BackendDescriptor) -> Backend:
        current = self._backends.get(descriptor.source_id)
        if current is not None and _same_endpoint(current.descriptor, descriptor):
            # enable/disable only swaps the frozen descriptor
            current.descriptor = descriptor
            return current

        if current is not None:
            # closed by close_retired()
            self._retired.append(current)
        backend = self._factory(descriptor)
        self._backends[descriptor.source_id] = backend
        return backend

    async def close_retired(self) -> None:
        """Close adapters superseded by a descriptor change."""
        retired, self._retired = self._retired, []
        for backend in retired:
            await backend.aclose()

    async def aclose(self) -> None:
        for backend in list(self._backends.values()) + self._retired:
            await backend.aclose()
        self._backends.clear()
        self._retired.clear()


def _same_endpoint(a: BackendDescriptor, b: BackendDescriptor) -> bool:
    return (
        a.base_url == b.base_url
        and a.api_key == b.api_key
        and a.path_prefix == b.path_prefix
        and a.case_insensitive_names == b.case_insensitive_names
    )

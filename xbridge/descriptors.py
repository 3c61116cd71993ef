"""Backend descriptors — the static registration of known sources."""

from __future__ import annotations

from dataclasses import dataclass, replace

from xbridge.errors import ModelConflict, UnknownGroupType


@dataclass(frozen=True)
class BackendDescriptor:
    """One independently operated source behind the facade."""

    group_type: str
    base_url: str
    api_key: str = ""
    enabled: bool = True
    # Path on the source that corresponds to the facade's /{group_type}.
    # None means the source serves the group under /{group_type} itself.
    path_prefix: str | None = None
    case_insensitive_names: bool = False

    @property
    def source_id(self) -> str:
        return self.group_type

    @property
    def root_url(self) -> str:
        return self.base_url.rstrip("/")

    def prefix_for(self, group_segment: str) -> str:
        if self.path_prefix is None or group_segment != self.group_type:
            return "/" + group_segment
        stripped = self.path_prefix.strip("/")
        return f"/{stripped}" if stripped else ""

    def __repr__(self) -> str:
        # api_key never appears in logs or tracebacks
        return (
            f"BackendDescriptor(group_type={self.group_type!r}, base_url={self.base_url!r}, "
            f"enabled={self.enabled!r}, has_api_key={bool(self.api_key)})"
        )


class DescriptorSet:
    """Ordered, group-type keyed set of backend descriptors.

    Read-only for every component except the aggregator, which serializes
    enable/disable/register against its refresh lock.
    """

    def __init__(self, descriptors: list[BackendDescriptor] | None = None) -> None:
        self._descriptors: dict[str, BackendDescriptor] = {}
        for descriptor in descriptors or []:
            self.register(descriptor)

    def register(self, descriptor: BackendDescriptor) -> BackendDescriptor:
        """Add a descriptor; a group type held by an enabled source is a conflict."""
        existing = self._descriptors.get(descriptor.group_type)
        if existing is not None and existing.enabled:
            raise ModelConflict(descriptor.group_type, existing.base_url, descriptor.base_url)
        self._descriptors[descriptor.group_type] = descriptor
        return descriptor

    def set_enabled(self, group_type: str, enabled: bool) -> BackendDescriptor:
        existing = self._descriptors.get(group_type)
        if existing is None:
            raise UnknownGroupType(group_type)
        updated = replace(existing, enabled=enabled)
        self._descriptors[group_type] = updated
        return updated

    def get(self, group_type: str) -> BackendDescriptor | None:
        return self._descriptors.get(group_type)

    def enabled(self) -> list[BackendDescriptor]:
        return [d for d in self._descriptors.values() if d.enabled]

    def all(self) -> list[BackendDescriptor]:
        return list(self._descriptors.values())

    def __contains__(self, group_type: object) -> bool:
        return group_type in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

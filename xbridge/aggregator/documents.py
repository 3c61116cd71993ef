"""Model and capabilities documents and their key-wise merge functions.

The consolidated model is the union of every source's ``groups``. Merges
operate key by key and never replace the ``groups`` map as a whole; each
group remembers which source contributed it so that source's keys can be
removed without touching anyone else's.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from xbridge.errors import ModelConflict

SET_LIKE_CAPABILITIES = ("flags", "schemas", "specversions")


def _unique(items: Iterable[Any]) -> list[Any]:
    seen: set = set()
    out: list[Any] = []
    for item in items:
        key = item if isinstance(item, (str, int, float, bool)) else repr(item)
        if key not in seen:
            seen.add(key)
            out.append(item)
    return out


@dataclass
class ModelDocument:
    """A model document; ``owners`` maps group type -> contributing source id."""

    groups: dict[str, dict] = field(default_factory=dict)
    owners: dict[str, str] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], source_id: str = "") -> ModelDocument:
        groups = dict(data.get("groups") or {})
        return cls(
            groups=copy.deepcopy(groups),
            owners={g: source_id for g in groups} if source_id else {},
            attributes={k: copy.deepcopy(v) for k, v in data.items() if k != "groups"},
        )

    def to_dict(self) -> dict:
        data = copy.deepcopy(self.attributes)
        data["groups"] = copy.deepcopy(self.groups)
        return data

    def groups_of(self, source_id: str) -> list[str]:
        return [g for g, owner in self.owners.items() if owner == source_id]


@dataclass
class CapabilitiesDocument:
    apis: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)
    schemas: list[str] = field(default_factory=list)
    specversions: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CapabilitiesDocument:
        return cls(
            apis=_unique(data.get("apis") or []),
            flags=_unique(data.get("flags") or []),
            schemas=_unique(data.get("schemas") or []),
            specversions=_unique(data.get("specversions") or []),
            extra={
                k: copy.deepcopy(v)
                for k, v in data.items()
                if k not in ("apis",) + SET_LIKE_CAPABILITIES
            },
        )

    def to_dict(self) -> dict:
        data = copy.deepcopy(self.extra)
        data.update(
            apis=list(self.apis),
            flags=list(self.flags),
            schemas=list(self.schemas),
            specversions=list(self.specversions),
        )
        return data


def merge_model(
    consolidated: ModelDocument,
    incoming: ModelDocument | Mapping[str, Any],
    source_id: str,
) -> ModelDocument:
    """Merge *incoming*'s groups into *consolidated*, key by key.

    A group type already owned by another source raises
    :class:`ModelConflict` before anything is changed. Top-level model
    attributes other than ``groups`` keep their first-seen value.
    """
    if not isinstance(incoming, ModelDocument):
        incoming = ModelDocument.from_dict(incoming, source_id)

    for group_type in incoming.groups:
        owner = consolidated.owners.get(group_type)
        if owner is not None and owner != source_id:
            raise ModelConflict(group_type, owner, source_id)

    result = ModelDocument(
        groups=dict(consolidated.groups),
        owners=dict(consolidated.owners),
        attributes=dict(consolidated.attributes),
    )
    for group_type, definition in incoming.groups.items():
        result.groups[group_type] = copy.deepcopy(definition)
        result.owners[group_type] = source_id
    for key, value in incoming.attributes.items():
        result.attributes.setdefault(key, copy.deepcopy(value))
    return result


def remove_source(consolidated: ModelDocument, source_id: str) -> ModelDocument:
    """Drop exactly the group types contributed by *source_id*."""
    keep = [g for g in consolidated.groups if consolidated.owners.get(g) != source_id]
    return ModelDocument(
        groups={g: consolidated.groups[g] for g in keep},
        owners={g: consolidated.owners[g] for g in keep if g in consolidated.owners},
        attributes=dict(consolidated.attributes),
    )


def merge_capabilities(
    consolidated: CapabilitiesDocument,
    incoming: CapabilitiesDocument | Mapping[str, Any],
) -> CapabilitiesDocument:
    """``apis`` is a deduplicated concatenation; set-like fields are unions."""
    if not isinstance(incoming, CapabilitiesDocument):
        incoming = CapabilitiesDocument.from_dict(incoming)

    extra = dict(consolidated.extra)
    for key, value in incoming.extra.items():
        extra.setdefault(key, copy.deepcopy(value))

    return CapabilitiesDocument(
        apis=_unique(consolidated.apis + incoming.apis),
        flags=_unique(consolidated.flags + incoming.flags),
        schemas=_unique(consolidated.schemas + incoming.schemas),
        specversions=_unique(consolidated.specversions + incoming.specversions),
        extra=extra,
    )

"""Name-only collection indices for phase-1 matching."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

from xbridge.backends.base import IndexEntry
from xbridge.filtering.expressions import FilterClause, FilterExpression

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A resource that passed phase 1, with the clauses whose name it matched."""

    resource_id: str
    name: str
    position: int
    clauses: tuple[int, ...]


@dataclass
class NameIndex:
    """Names of one collection in source order."""

    entries: Sequence[IndexEntry]
    built_at: float = field(default_factory=time.monotonic)
    _exact: dict[tuple[str, bool], list[int]] = field(default_factory=dict, repr=False)

    def __len__(self) -> int:
        return len(self.entries)

    def _lookup(self, name: str, case_sensitive: bool) -> list[int]:
        key = (name if case_sensitive else name.lower(), case_sensitive)
        if not self._exact:
            for case in (True, False):
                for pos, entry in enumerate(self.entries):
                    folded = entry.name if case else entry.name.lower()
                    self._exact.setdefault((folded, case), []).append(pos)
        return self._exact.get(key, [])

    def _positions(self, clause: FilterClause, case_sensitive: bool) -> set[int]:
        positions: set[int] = set()
        scan = []
        for expr in clause.name_expressions:
            if _exact_lookup_ok(expr):
                positions.update(self._lookup(expr.value, case_sensitive))
            else:
                scan.append(expr)
        if scan:
            for pos, entry in enumerate(self.entries):
                if pos not in positions and any(e.matches(entry.name, case_sensitive) for e in scan):
                    positions.add(pos)
        return positions

    def match(self, clauses: Sequence[FilterClause], case_sensitive: bool = True) -> list[Candidate]:
        """Phase 1: evaluate only the name predicates, no network access.

        Returns the union over *clauses* in index order. Every clause must
        already carry a name expression.
        """
        hits: dict[int, list[int]] = {}
        for clause_no, clause in enumerate(clauses):
            for pos in self._positions(clause, case_sensitive):
                hits.setdefault(pos, []).append(clause_no)

        return [
            Candidate(
                resource_id=self.entries[pos].resource_id,
                name=self.entries[pos].name,
                position=pos,
                clauses=tuple(hits[pos]),
            )
            for pos in sorted(hits)
        ]


def _exact_lookup_ok(expr: FilterExpression) -> bool:
    return expr.operator == "=" and not expr.is_wildcard and expr.value.lower() != "null"


IndexLoader = Callable[[], Awaitable[Sequence[IndexEntry]]]


class NameIndexCache:
    """Bounded, TTL-limited cache of name indices.

    Keyed by source, path and credential scope, so an index built with one
    caller's upstream credential is never served to another.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        max_entries: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._indices: OrderedDict[tuple[str, str, str], NameIndex] = OrderedDict()

    async def get(self, source_id: str, path: str, loader: IndexLoader, scope: str = "") -> NameIndex:
        key = (source_id, path, scope)
        index = self._indices.get(key)
        now = self._clock()
        if index is not None and now - index.built_at < self.ttl:
            self._indices.move_to_end(key)
            return index

        entries = await loader()
        index = NameIndex(entries=tuple(entries), built_at=self._clock())
        self._indices[key] = index
        self._indices.move_to_end(key)
        while len(self._indices) > self.max_entries:
            evicted, _ = self._indices.popitem(last=False)
            logger.debug("Evicted name index %s", evicted)
        logger.debug("Built name index for %s%s with %d entries", source_id, path, len(index))
        return index

    def invalidate(self, source_id: str | None = None) -> None:
        if source_id is None:
            self._indices.clear()
            return
        for key in [k for k in self._indices if k[0] == source_id]:
            del self._indices[key]

    def __len__(self) -> int:
        return len(self._indices)

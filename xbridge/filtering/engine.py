"""Two-step filter engine.

Filtering a large collection attribute by attribute would cost one upstream
call per member. Instead:

1. **Parse** every ``filter`` parameter (malformed input is rejected before
   any backend call).
2. **Validate**: a clause without a ``name`` predicate matches nothing.
3. **Phase 1**: evaluate the name predicates against a cached name index.
4. **Fetch-limit gate**: only the first ``fetch_limit`` candidates go on; the
   rest are dropped and the result is marked truncated.
5. **Phase 2**: fetch metadata for the survivors through a bounded worker
   pool, each fetch with its own timeout, the whole phase under a deadline,
   and keep those satisfying the non-name predicates of a matched clause.
6. **Compose**: results in candidate order, cut to the caller's ``limit``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from xbridge.backends.base import Backend
from xbridge.errors import BridgeError, EnrichmentFailure, MissingNameExpression
from xbridge.filtering.expressions import FilterClause, parse_clause
from xbridge.filtering.index import Candidate, NameIndexCache

logger = logging.getLogger(__name__)


@dataclass
class EnrichedResult:
    """A phase-1 candidate with its full metadata attached."""

    resource_id: str
    name: str
    metadata: dict


@dataclass
class FilterResult:
    """Outcome of one filtered collection request.

    ``truncated`` and ``deadline_exceeded`` make incompleteness visible to
    the caller instead of silently returning fewer matches.
    """

    entries: list[EnrichedResult] = field(default_factory=list)
    candidate_count: int = 0
    fetched_count: int = 0
    fetch_limit: int = 0
    truncated: bool = False
    failures: int = 0
    deadline_exceeded: bool = False
    matched_count: int = 0
    rejected_clauses: list[str] = field(default_factory=list)

    def as_collection(self) -> dict[str, dict]:
        """Ordered ``resourceId -> resource`` map."""
        return {e.resource_id: e.metadata for e in self.entries}


def credential_scope(backend: Backend, headers: Mapping[str, str] | None) -> str:
    """Fingerprint of the caller credential forwarded to a source without its own key."""
    if backend.descriptor.api_key:
        return ""
    authorization = next(
        (v for k, v in (headers or {}).items() if k.lower() == "authorization"), ""
    )
    if not authorization:
        return ""
    return hashlib.sha256(authorization.encode("utf-8")).hexdigest()[:16]


class TwoStepFilterEngine:
    """Executes attribute-filtered collection queries against one source."""

    def __init__(
        self,
        index_cache: NameIndexCache | None = None,
        fetch_limit: int = 50,
        max_fetch_limit: int = 200,
        concurrency: int = 8,
        fetch_timeout: float = 10.0,
        deadline: float = 30.0,
    ) -> None:
        self.index_cache = index_cache or NameIndexCache()
        self.fetch_limit = fetch_limit
        self.max_fetch_limit = max(max_fetch_limit, fetch_limit)
        self.concurrency = max(1, concurrency)
        self.fetch_timeout = fetch_timeout
        self.deadline = deadline

    def resolve_fetch_limit(self, requested: int | None) -> int:
        """Per-request override, clamped to ``[1, max_fetch_limit]``."""
        if requested is None:
            return self.fetch_limit
        return max(1, min(requested, self.max_fetch_limit))

    @staticmethod
    def validate(clauses: Sequence[FilterClause]) -> tuple[list[FilterClause], list[str]]:
        """Split clauses into usable ones and those lacking a name predicate."""
        valid: list[FilterClause] = []
        rejected: list[str] = []
        for clause in clauses:
            try:
                clause.require_name()
            except MissingNameExpression as exc:
                logger.info("Ignoring filter clause without name predicate: %s", exc.clause)
                rejected.append(exc.clause)
                continue
            valid.append(clause)
        return valid, rejected

    async def run(
        self,
        backend: Backend,
        collection_path: str,
        filters: Sequence[str] | Sequence[FilterClause],
        *,
        limit: int | None = None,
        fetch_limit: int | None = None,
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> FilterResult:
        started = time.monotonic()
        clauses = [f if isinstance(f, FilterClause) else parse_clause(f) for f in filters]

        valid, rejected = self.validate(clauses)
        result = FilterResult(rejected_clauses=rejected, fetch_limit=self.resolve_fetch_limit(fetch_limit))
        if not valid:
            return result

        case_sensitive = not backend.descriptor.case_insensitive_names
        index = await self.index_cache.get(
            backend.source_id,
            collection_path,
            lambda: backend.list_collection(collection_path, headers),
            credential_scope(backend, headers),
        )
        candidates = index.match(valid, case_sensitive)
        result.candidate_count = len(candidates)

        selected = candidates[: result.fetch_limit]
        if len(candidates) > len(selected):
            result.truncated = True
            logger.warning(
                "Filter on %s%s: %d candidates, enrichment limited to %d",
                backend.source_id, collection_path, len(candidates), len(selected),
            )
        result.fetched_count = len(selected)

        remaining = (self.deadline if deadline is None else deadline) - (time.monotonic() - started)
        outcomes, result.failures, result.deadline_exceeded = await self._enrich(
            backend, collection_path, selected, headers, remaining
        )

        for candidate, metadata in zip(selected, outcomes):
            if metadata is None:
                continue
            if any(valid[c].matches_metadata(metadata, case_sensitive) for c in candidate.clauses):
                result.entries.append(
                    EnrichedResult(resource_id=candidate.resource_id, name=candidate.name, metadata=metadata)
                )

        result.matched_count = len(result.entries)
        if limit is not None:
            result.entries = result.entries[: max(limit, 0)]

        logger.info(
            "Filter on %s%s: index=%d candidates=%d fetched=%d failures=%d matched=%d returned=%d (%.0f ms)",
            backend.source_id, collection_path, len(index), result.candidate_count,
            result.fetched_count, result.failures, result.matched_count, len(result.entries),
            (time.monotonic() - started) * 1000,
        )
        return result

    async def _enrich(
        self,
        backend: Backend,
        collection_path: str,
        selected: Sequence[Candidate],
        headers: Mapping[str, str] | None,
        remaining: float,
    ) -> tuple[list[dict | None], int, bool]:
        """Phase 2. Returns per-candidate metadata (None when excluded),
        the failure count, and whether the deadline cut the phase short."""
        if not selected:
            return [], 0, False
        if remaining <= 0:
            return [None] * len(selected), 0, True

        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch(candidate: Candidate) -> dict:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        backend.get_resource_metadata(collection_path, candidate.resource_id, headers),
                        timeout=self.fetch_timeout,
                    )
                except asyncio.TimeoutError as exc:
                    raise EnrichmentFailure(candidate.resource_id, "timed out") from exc

        tasks = [asyncio.ensure_future(fetch(c)) for c in selected]
        try:
            _, pending = await asyncio.wait(tasks, timeout=remaining)
        except asyncio.CancelledError:
            # client went away: abandon the in-flight fetches
            for task in tasks:
                task.cancel()
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "Filter on %s%s: deadline reached, %d enrichment(s) abandoned",
                backend.source_id, collection_path, len(pending),
            )

        outcomes: list[dict | None] = []
        failures = 0
        for candidate, task in zip(selected, tasks):
            if task in pending or task.cancelled():
                outcomes.append(None)
                continue
            exc = task.exception()
            if exc is None:
                outcomes.append(task.result())
            elif isinstance(exc, BridgeError):
                failures += 1
                logger.warning("Enrichment of %s failed: %s", candidate.resource_id, exc)
                outcomes.append(None)
            else:
                raise exc
        return outcomes, failures, bool(pending)

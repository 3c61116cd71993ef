"""Bridge — wires descriptors, aggregator, router and filter engine together.

The web layer and the CLI both drive the facade through this class; it owns
the process-wide state (descriptor set, snapshot, backend pool, name-index
cache) and dispatches each request to pass-through or two-step filtering.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from xbridge import __version__
from xbridge.aggregator.aggregator import Aggregator, Snapshot
from xbridge.backends.base import Backend
from xbridge.backends.http import HttpBackend
from xbridge.backends.pool import BackendFactory, BackendPool
from xbridge.config import SUPPORTED_SPECVERSIONS, BridgeSettings, load_descriptors
from xbridge.descriptors import BackendDescriptor, DescriptorSet
from xbridge.errors import BridgeError, InvalidParameter, UnsupportedSpecVersion
from xbridge.filtering.engine import FilterResult, TwoStepFilterEngine
from xbridge.filtering.expressions import parse_filters
from xbridge.filtering.index import NameIndexCache
from xbridge.routing.router import (
    PathRouter,
    Route,
    outbound_headers,
    rewrite_response,
    rewrite_url,
)

logger = logging.getLogger(__name__)

REGISTRY_ID = "xregistry-bridge"

# Query parameters consumed by the facade and never forwarded
_FACADE_PARAMS = ("filter", "fetchlimit")

_LINK_TARGET = re.compile(r"<([^>]*)>")

FILTER_HEADERS = (
    "X-Filter-Candidates",
    "X-Filter-Fetched",
    "X-Filter-Fetch-Limit",
    "X-Filter-Truncated",
    "X-Filter-Enrichment-Failures",
    "X-Filter-Deadline-Exceeded",
    "X-Filter-Rejected-Clauses",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class GatewayResponse:
    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)


def _int_param(params: Sequence[tuple[str, str]], name: str) -> int | None:
    values = [v for k, v in params if k == name]
    if not values:
        return None
    try:
        value = int(values[-1])
    except ValueError:
        raise InvalidParameter(f"'{name}' must be an integer, got '{values[-1]}'") from None
    if value < 0:
        raise InvalidParameter(f"'{name}' must not be negative")
    return value


class Bridge:
    """The facade's process-wide state and request dispatch."""

    def __init__(
        self,
        settings: BridgeSettings,
        descriptors: DescriptorSet,
        backend_factory: BackendFactory | None = None,
    ) -> None:
        self.settings = settings
        self.pool = BackendPool(backend_factory or self._http_backend)
        self.aggregator = Aggregator(descriptors, self.pool, timeout=settings.backend_timeout)
        self.router = PathRouter(
            lambda: self.aggregator.descriptors,
            lambda: self.aggregator.snapshot.model.owners,
        )
        self.index_cache = NameIndexCache(
            ttl=settings.name_index_ttl,
            max_entries=settings.name_index_max_entries,
        )
        self.engine = TwoStepFilterEngine(
            index_cache=self.index_cache,
            fetch_limit=settings.fetch_limit,
            max_fetch_limit=settings.max_fetch_limit,
            concurrency=settings.enrichment_concurrency,
            fetch_timeout=settings.fetch_timeout,
            deadline=settings.filter_deadline,
        )
        self.started_at = _now()
        self._refresh_loop_task: asyncio.Task | None = None

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        backend_factory: BackendFactory | None = None,
    ) -> Bridge:
        settings = BridgeSettings.from_env(env)
        return cls(settings, load_descriptors(settings, env), backend_factory)

    def _http_backend(self, descriptor: BackendDescriptor) -> Backend:
        return HttpBackend(
            descriptor,
            timeout=self.settings.backend_timeout,
            max_pages=self.settings.name_index_max_pages,
        )

    @property
    def descriptors(self) -> DescriptorSet:
        return self.aggregator.descriptors

    @property
    def snapshot(self) -> Snapshot:
        return self.aggregator.snapshot

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self, background: bool = True) -> Snapshot:
        if not self.settings.auth_configured:
            if self.settings.allow_anonymous:
                logger.warning("No BRIDGE_API_KEY configured; anonymous access is allowed")
            else:
                logger.warning("No BRIDGE_API_KEY configured; every request will be rejected")
        snapshot = await self.refresh()
        logger.info(
            "Bridge started: %d/%d backends active, groups=%s",
            len(snapshot.active_sources), len(self.descriptors.enabled()), snapshot.group_types,
        )
        if background and self.settings.retry_interval > 0:
            self._refresh_loop_task = asyncio.create_task(self._refresh_loop())
        return snapshot

    async def shutdown(self) -> None:
        if self._refresh_loop_task is not None:
            self._refresh_loop_task.cancel()
            try:
                await self._refresh_loop_task
            except asyncio.CancelledError:
                pass
            self._refresh_loop_task = None
        await self.pool.aclose()

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.retry_interval)
            await self.refresh()

    # ------------------------------------------------------------------
    # Administrative operations
    # ------------------------------------------------------------------

    async def refresh(self) -> Snapshot:
        snapshot = await self.aggregator.refresh()
        self.index_cache.invalidate()
        return snapshot

    async def set_enabled(self, group_type: str, enabled: bool) -> Snapshot:
        snapshot = await self.aggregator.set_enabled(group_type, enabled)
        self.index_cache.invalidate(group_type)
        return snapshot

    async def register(self, descriptor: BackendDescriptor) -> Snapshot:
        return await self.aggregator.register(descriptor)

    async def reload(self, env: Mapping[str, str] | None = None) -> Snapshot:
        """Re-read backend configuration and rebuild the consolidated view."""
        descriptors = load_descriptors(self.settings, env)
        snapshot = await self.aggregator.replace_descriptors(descriptors)
        self.index_cache.invalidate()
        return snapshot

    # ------------------------------------------------------------------
    # Root-level documents
    # ------------------------------------------------------------------

    def facade_base(self, request_base_url: str = "") -> str:
        return (self.settings.base_url or request_base_url or "").rstrip("/")

    async def root_document(
        self,
        facade_base: str,
        inline: Sequence[str] = (),
        specversion: str = "1.0",
    ) -> dict:
        if specversion not in SUPPORTED_SPECVERSIONS:
            raise UnsupportedSpecVersion(specversion, SUPPORTED_SPECVERSIONS)

        snapshot = self.snapshot
        doc: dict[str, Any] = {
            "specversion": specversion,
            "registryid": REGISTRY_ID,
            "self": facade_base or "/",
            "xid": "/",
            "epoch": snapshot.epoch,
            "name": "xRegistry Bridge",
            "description": "Unified xRegistry bridge for multiple package registry backends",
            "createdat": self.started_at,
            "modifiedat": snapshot.built_at,
        }
        for group_type in snapshot.group_types:
            plural = snapshot.plural_of(group_type)
            doc[f"{plural}url"] = f"{facade_base}/{group_type}"
            doc[f"{plural}count"] = snapshot.count_of(group_type)

        wanted = {i.strip() for i in inline if i.strip()}
        inline_all = "*" in wanted
        if inline_all or "model" in wanted:
            doc["model"] = snapshot.model.to_dict()
        if inline_all or "capabilities" in wanted:
            doc["capabilities"] = snapshot.capabilities.to_dict()
        for group_type in snapshot.group_types:
            plural = snapshot.plural_of(group_type)
            if inline_all or plural in wanted:
                doc[plural] = await self._inline_groups(group_type, facade_base)
        return doc

    async def _inline_groups(self, group_type: str, facade_base: str) -> Any:
        try:
            route = self.router.route("/" + group_type)
            backend = self.pool.get(route.descriptor)
            upstream = await backend.get_resource(route.upstream_path)
        except BridgeError as exc:
            logger.error("Failed to inline %s: %s", group_type, exc)
            return {}
        if upstream.status_code >= 400:
            return {}
        return rewrite_response(upstream.body, route.descriptor, facade_base, group_type)

    def model_document(self) -> dict:
        return self.snapshot.model.to_dict()

    def capabilities_document(self) -> dict:
        return self.snapshot.capabilities.to_dict()

    def health(self) -> dict:
        snapshot = self.snapshot
        return {
            "status": "healthy" if snapshot.healthy else "unhealthy",
            "timestamp": _now(),
            "active_backends": len(snapshot.active_sources),
            "total_backends": len(self.descriptors),
            "consolidated_groups": snapshot.group_types,
            "failed_backends": [
                {"group_type": source, "error": error}
                for source, error in snapshot.failed_sources
            ],
            "retry_interval": self.settings.retry_interval,
        }

    def status(self) -> dict:
        snapshot = self.snapshot
        states = {s.descriptor.source_id: s for s in self.aggregator.states()}
        backends = []
        for descriptor in self.descriptors.all():
            state = states.get(descriptor.source_id)
            backends.append(
                {
                    "group_type": descriptor.group_type,
                    "url": descriptor.base_url,
                    "enabled": descriptor.enabled,
                    "active": bool(state and state.active),
                    "last_attempt": state.last_attempt if state else "",
                    "error": state.error if state else "",
                    "consecutive_failures": state.consecutive_failures if state else 0,
                    "groups": snapshot.model.groups_of(descriptor.source_id),
                }
            )
        return {
            "timestamp": _now(),
            "version": __version__,
            "epoch": snapshot.epoch,
            "backends": backends,
            "group_mappings": {
                group_type: self.descriptors.get(owner).base_url
                for group_type, owner in snapshot.model.owners.items()
                if self.descriptors.get(owner) is not None
            },
            "conflicts": [
                {
                    "group_type": c.group_type,
                    "kept_source": c.kept_source,
                    "rejected_source": c.rejected_source,
                }
                for c in snapshot.conflicts
            ],
            "name_indices": len(self.index_cache),
        }

    # ------------------------------------------------------------------
    # Routed requests
    # ------------------------------------------------------------------

    async def handle(
        self,
        path: str,
        params: Sequence[tuple[str, str]],
        headers: Mapping[str, str],
        facade_base: str,
    ) -> GatewayResponse:
        """Dispatch a ``/{groupType}...`` request.

        Collections with ``filter`` parameters go through the two-step engine;
        everything else is passed through with URLs rewritten.
        """
        route = self.router.route(path)
        filters = [v for k, v in params if k == "filter"]

        if filters and route.is_collection:
            # parse before any backend interaction
            clauses = parse_filters(filters)
            limit = _int_param(params, "limit")
            fetch_limit = _int_param(params, "fetchlimit")
            result = await self.filter_collection(
                route, clauses, headers, facade_base, limit=limit, fetch_limit=fetch_limit
            )
            return GatewayResponse(
                status_code=200,
                body=result.as_collection(),
                headers=filter_headers(result),
            )

        return await self.forward(route, params, headers, facade_base)

    async def forward(
        self,
        route: Route,
        params: Sequence[tuple[str, str]],
        headers: Mapping[str, str],
        facade_base: str,
    ) -> GatewayResponse:
        backend = self.pool.get(route.descriptor)
        upstream = await backend.get_resource(
            route.upstream_path,
            params=[(k, v) for k, v in params if k not in _FACADE_PARAMS],
            headers=outbound_headers(route.descriptor, headers, self.settings.api_keys),
        )
        body = rewrite_response(upstream.body, route.descriptor, facade_base, route.group_type)
        passthrough = {}
        for name, value in upstream.headers.items():
            if name.lower() == "link":
                passthrough["Link"] = _LINK_TARGET.sub(
                    lambda m: "<" + rewrite_url(m.group(1), route.descriptor, facade_base, route.group_type) + ">",
                    value,
                )
            elif name.lower() in ("etag", "last-modified"):
                passthrough[name] = value
        return GatewayResponse(status_code=upstream.status_code, body=body, headers=passthrough)

    async def filter_collection(
        self,
        route: Route,
        clauses: Sequence,
        headers: Mapping[str, str],
        facade_base: str,
        *,
        limit: int | None = None,
        fetch_limit: int | None = None,
    ) -> FilterResult:
        backend = self.pool.get(route.descriptor)
        result = await self.engine.run(
            backend,
            route.upstream_path,
            clauses,
            limit=limit,
            fetch_limit=fetch_limit,
            headers=outbound_headers(route.descriptor, headers, self.settings.api_keys),
        )
        for entry in result.entries:
            entry.metadata = rewrite_response(entry.metadata, route.descriptor, facade_base, route.group_type)
        return result


def filter_headers(result: FilterResult) -> dict[str, str]:
    """Expose truncation and partial results to the caller."""
    headers = {
        "X-Filter-Candidates": str(result.candidate_count),
        "X-Filter-Fetched": str(result.fetched_count),
        "X-Filter-Fetch-Limit": str(result.fetch_limit),
        "X-Filter-Truncated": "true" if result.truncated else "false",
        "X-Filter-Enrichment-Failures": str(result.failures),
        "X-Filter-Deadline-Exceeded": "true" if result.deadline_exceeded else "false",
    }
    if result.rejected_clauses:
        headers["X-Filter-Rejected-Clauses"] = str(len(result.rejected_clauses))
    return headers

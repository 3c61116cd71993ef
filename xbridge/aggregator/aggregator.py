"""Document aggregator — consolidated model/capabilities snapshot.

Readers take :attr:`Aggregator.snapshot`, an immutable value that is swapped
atomically when a refresh finishes. One lock serializes refreshes with
administrative changes (enable, disable, register, reload); refresh requests
arriving while one is running join the running one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from xbridge.aggregator.documents import (
    CapabilitiesDocument,
    ModelDocument,
    merge_capabilities,
    merge_model,
)
from xbridge.backends.pool import BackendPool
from xbridge.descriptors import BackendDescriptor, DescriptorSet
from xbridge.errors import BridgeError, ModelConflict

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SourceState:
    """Last known state of one source; mutated only under the aggregator lock."""

    descriptor: BackendDescriptor
    active: bool = False
    last_attempt: str = ""
    error: str = ""
    consecutive_failures: int = 0
    root: dict[str, Any] = field(default_factory=dict)
    model: dict[str, Any] | None = None
    capabilities: dict[str, Any] | None = None


@dataclass(frozen=True)
class ConflictRecord:
    group_type: str
    kept_source: str
    rejected_source: str


@dataclass(frozen=True)
class Snapshot:
    """Consolidated view of all responsive sources. Never mutated once built."""

    model: ModelDocument = field(default_factory=ModelDocument)
    capabilities: CapabilitiesDocument = field(default_factory=CapabilitiesDocument)
    active_sources: tuple[str, ...] = ()
    failed_sources: tuple[tuple[str, str], ...] = ()
    conflicts: tuple[ConflictRecord, ...] = ()
    counts: tuple[tuple[str, int], ...] = ()
    epoch: int = 1
    built_at: str = ""

    @property
    def group_types(self) -> list[str]:
        return list(self.model.groups)

    def owner_of(self, group_type: str) -> str | None:
        return self.model.owners.get(group_type)

    def plural_of(self, group_type: str) -> str:
        definition = self.model.groups.get(group_type) or {}
        return definition.get("plural") or group_type

    def count_of(self, group_type: str) -> int:
        return dict(self.counts).get(group_type, 0)

    @property
    def healthy(self) -> bool:
        return bool(self.active_sources)


class Aggregator:
    """Fetches every enabled source's documents and merges them."""

    def __init__(
        self,
        descriptors: DescriptorSet,
        pool: BackendPool,
        timeout: float = 10.0,
    ) -> None:
        self.descriptors = descriptors
        self._pool = pool
        self._timeout = timeout
        self._states: dict[str, SourceState] = {}
        self._snapshot = Snapshot(built_at=_now())
        self._lock = asyncio.Lock()
        self._inflight: asyncio.Future | None = None

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def states(self) -> list[SourceState]:
        return list(self._states.values())

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> Snapshot:
        """Recompute the consolidated view from scratch.

        Concurrent callers share the refresh already in flight.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._refresh_locked())
        return await asyncio.shield(self._inflight)

    async def _refresh_locked(self) -> Snapshot:
        async with self._lock:
            await self._probe_all()
            return self._rebuild()

    async def _probe_all(self) -> None:
        enabled = self.descriptors.enabled()
        enabled_ids = {d.source_id for d in enabled}
        for source_id in list(self._states):
            if source_id not in enabled_ids:
                del self._states[source_id]
        await asyncio.gather(*(self._probe(d) for d in enabled))

    async def _probe(self, descriptor: BackendDescriptor) -> SourceState:
        state = self._states.get(descriptor.source_id)
        if state is None:
            state = SourceState(descriptor=descriptor)
            self._states[descriptor.source_id] = state
        state.descriptor = descriptor
        state.last_attempt = _now()

        backend = self._pool.get(descriptor)
        try:
            root, model, capabilities = await asyncio.wait_for(
                asyncio.gather(
                    backend.get_root(),
                    backend.get_model(),
                    backend.get_capabilities(),
                ),
                timeout=self._timeout,
            )
        except (BridgeError, asyncio.TimeoutError) as exc:
            reason = str(exc) or "timed out"
            state.consecutive_failures += 1
            state.error = reason
            if state.active:
                logger.warning("Backend %s deactivated: %s", descriptor.source_id, reason)
            else:
                logger.warning("Backend %s unreachable: %s", descriptor.source_id, reason)
            state.active = False
            return state

        state.active = True
        state.error = ""
        state.consecutive_failures = 0
        state.root = root or {}
        state.model = model
        state.capabilities = capabilities
        logger.info(
            "Backend %s active with groups %s",
            descriptor.source_id, sorted((model.get("groups") or {}).keys()),
        )
        return state

    def _rebuild(self) -> Snapshot:
        """Merge the cached documents of all active, enabled sources."""
        previous = self._snapshot
        model = ModelDocument()
        capabilities = CapabilitiesDocument()
        conflicts: list[ConflictRecord] = []

        # configuration order decides which source keeps a contested key
        active = []
        for descriptor in self.descriptors.enabled():
            state = self._states.get(descriptor.source_id)
            if state is not None and state.active and state.model is not None:
                active.append(state)

        # A source keeps the group type its descriptor is bound to; that key is
        # claimed first so unbound declarations elsewhere cannot take it.
        bound_first: list[tuple[SourceState, str]] = []
        unbound: list[tuple[SourceState, str]] = []
        for state in active:
            for group_type in (state.model or {}).get("groups") or {}:
                target = bound_first if group_type == state.descriptor.group_type else unbound
                target.append((state, group_type))

        for state, group_type in bound_first + unbound:
            single = {"groups": {group_type: state.model["groups"][group_type]}}
            single.update({k: v for k, v in state.model.items() if k != "groups"})
            try:
                model = merge_model(model, single, state.descriptor.source_id)
            except ModelConflict as exc:
                logger.error(
                    "Group type %s claimed by %s is already owned by %s; excluded",
                    exc.group_type, exc.new_source, exc.existing_source,
                )
                conflicts.append(
                    ConflictRecord(exc.group_type, exc.existing_source, exc.new_source)
                )

        for state in active:
            capabilities = merge_capabilities(capabilities, state.capabilities or {})

        counts = []
        for group_type, owner in model.owners.items():
            state = self._states[owner]
            plural = (model.groups[group_type] or {}).get("plural") or group_type
            count = state.root.get(f"{plural}count", 0)
            counts.append((group_type, count if isinstance(count, int) else 0))

        epoch = previous.epoch
        if set(model.groups) != set(previous.model.groups):
            epoch += 1
            logger.info("Consolidated model updated: groups=%s epoch=%d", sorted(model.groups), epoch)

        snapshot = Snapshot(
            model=model,
            capabilities=capabilities,
            active_sources=tuple(s.descriptor.source_id for s in active),
            failed_sources=tuple(
                (s.descriptor.source_id, s.error)
                for s in self._states.values()
                if not s.active
            ),
            conflicts=tuple(conflicts),
            counts=tuple(counts),
            epoch=epoch,
            built_at=_now(),
        )
        self._snapshot = snapshot
        return snapshot

    # ------------------------------------------------------------------
    # Administrative changes (exclusive with refresh)
    # ------------------------------------------------------------------

    async def set_enabled(self, group_type: str, enabled: bool) -> Snapshot:
        """Enable or disable one source without restarting the others."""
        async with self._lock:
            descriptor = self.descriptors.set_enabled(group_type, enabled)
            if enabled:
                await self._probe(descriptor)
            else:
                self._states.pop(descriptor.source_id, None)
            logger.info("Backend %s %s", group_type, "enabled" if enabled else "disabled")
            return self._rebuild()

    async def register(self, descriptor: BackendDescriptor) -> Snapshot:
        """Add a source at runtime; raises ModelConflict on a taken group type."""
        async with self._lock:
            owner = self._snapshot.model.owners.get(descriptor.group_type)
            current = self.descriptors.get(owner) if owner else None
            if current is not None and current.enabled and owner != descriptor.source_id:
                raise ModelConflict(descriptor.group_type, owner, descriptor.source_id)
            self.descriptors.register(descriptor)
            if descriptor.enabled:
                await self._probe(descriptor)
            return self._rebuild()

    async def replace_descriptors(self, descriptors: DescriptorSet) -> Snapshot:
        """Swap in a freshly loaded configuration and refresh everything."""
        async with self._lock:
            self.descriptors = descriptors
            await self._probe_all()
            snapshot = self._rebuild()
            await self._pool.close_retired()
            return snapshot


"""Path router.

Maps an incoming facade path to the source that owns its leading segment,
rewrites source URLs in responses into the facade's namespace, and decides
which credential travels upstream.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from xbridge.descriptors import BackendDescriptor, DescriptorSet
from xbridge.errors import UnknownGroupType

# Headers propagated upstream for request correlation
TRACE_HEADERS = ("x-correlation-id", "x-request-id", "traceparent", "tracestate")


@dataclass(frozen=True)
class Route:
    """Where a facade path goes."""

    descriptor: BackendDescriptor
    group_type: str
    residual_path: str
    segments: tuple[str, ...]

    @property
    def upstream_path(self) -> str:
        """Source-relative path to forward to."""
        return (self.descriptor.prefix_for(self.group_type) + self.residual_path) or "/"

    @property
    def is_collection(self) -> bool:
        # /{g}, /{g}/{id}/{rt}, /{g}/{id}/{rt}/{rid}/versions; never a meta object
        if len(self.segments) > 4 and self.segments[-1] == "meta":
            return False
        return len(self.segments) % 2 == 1


class PathRouter:
    """Resolves group types against the enabled descriptors.

    ``descriptors`` and ``group_owners`` may be callables so the router always
    sees the aggregator's current configuration and snapshot.
    """

    def __init__(
        self,
        descriptors: DescriptorSet | Callable[[], DescriptorSet],
        group_owners: Mapping[str, str] | Callable[[], Mapping[str, str]] | None = None,
    ) -> None:
        self._descriptors = descriptors if callable(descriptors) else (lambda: descriptors)
        if group_owners is None:
            self._owners: Callable[[], Mapping[str, str]] = dict
        elif callable(group_owners):
            self._owners = group_owners
        else:
            self._owners = lambda: group_owners

    def route(self, path: str) -> Route:
        """Return the route for *path* or raise :class:`UnknownGroupType`."""
        segments = tuple(s for s in path.split("?", 1)[0].strip("/").split("/") if s)
        if not segments:
            raise UnknownGroupType("")
        group_type = segments[0]

        descriptors = self._descriptors()
        descriptor = descriptors.get(group_type)
        if descriptor is None or not descriptor.enabled:
            # groups declared in a source's model beyond its bound group type
            owner = self._owners().get(group_type)
            descriptor = descriptors.get(owner) if owner else None
            if descriptor is None or not descriptor.enabled:
                raise UnknownGroupType(group_type)

        residual = "/" + "/".join(segments[1:]) if len(segments) > 1 else ""
        return Route(
            descriptor=descriptor,
            group_type=group_type,
            residual_path=residual,
            segments=segments,
        )


# ---------------------------------------------------------------------------
# Response rewriting
# ---------------------------------------------------------------------------


def _at_boundary(value: str, prefix: str) -> bool:
    if not value.startswith(prefix):
        return False
    rest = value[len(prefix):]
    return rest == "" or rest[0] in "/?#"


def rewrite_url(value: str, descriptor: BackendDescriptor, facade_base_url: str, group_type: str) -> str:
    facade = facade_base_url.rstrip("/")
    source_root = descriptor.root_url
    group_prefix = source_root + descriptor.prefix_for(group_type)
    if _at_boundary(value, group_prefix):
        return f"{facade}/{group_type}{value[len(group_prefix):]}"
    if _at_boundary(value, source_root):
        return facade + value[len(source_root):]
    return value


def rewrite_response(
    body: Any,
    descriptor: BackendDescriptor,
    facade_base_url: str,
    group_type: str | None = None,
) -> Any:
    """Return a copy of *body* with every source URL moved to the facade.

    Walks nested dicts and lists, so ``self``, ``versionsurl``, ``metaurl``
    and friends are rewritten at every level of the resource model.
    """
    group_type = group_type or descriptor.group_type
    if isinstance(body, str):
        return rewrite_url(body, descriptor, facade_base_url, group_type)
    if isinstance(body, dict):
        return {
            k: rewrite_response(v, descriptor, facade_base_url, group_type)
            for k, v in body.items()
        }
    if isinstance(body, list):
        return [rewrite_response(v, descriptor, facade_base_url, group_type) for v in body]
    return body


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def carries_facade_key(authorization: str, facade_keys: Iterable[str]) -> bool:
    _, _, token = authorization.partition(" ")
    candidates = [authorization.strip(), token.strip()]
    return any(
        hmac.compare_digest(c, key) for key in facade_keys if key for c in candidates if c
    )


def outbound_headers(
    descriptor: BackendDescriptor,
    inbound_headers: Mapping[str, str] | None,
    facade_keys: Iterable[str] = (),
) -> dict[str, str]:
    """Headers for a request forwarded to *descriptor*'s source.

    The source's own key replaces whatever the client sent; without one, the
    client's ``Authorization`` header is forwarded unless it is a facade key.
    The facade's ``X-API-Key`` header never travels upstream.
    """
    inbound = {k.lower(): v for k, v in (inbound_headers or {}).items()}
    headers: dict[str, str] = {}

    if descriptor.api_key:
        headers["Authorization"] = f"Bearer {descriptor.api_key}"
    else:
        authorization = inbound.get("authorization", "")
        if authorization and not carries_facade_key(authorization, facade_keys):
            headers["Authorization"] = authorization

    for name in TRACE_HEADERS:
        if name in inbound:
            headers[name] = inbound[name]
    return headers

"""HTTP adapter for xRegistry-speaking sources.

Every per-ecosystem server (npm, PyPI, Maven, NuGet, OCI, ...) already
answers the xRegistry HTTP surface, so one adapter built on ``httpx`` covers
them all.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from xbridge.backends.base import Backend, IndexEntry, UpstreamResponse
from xbridge.descriptors import BackendDescriptor
from xbridge.errors import BackendUnavailable, EnrichmentFailure

logger = logging.getLogger(__name__)

# Response headers worth passing back to the client
_PASSTHROUGH_HEADERS = ("content-type", "link", "etag", "last-modified")


class HttpBackend(Backend):
    """Talks to one xRegistry source over HTTP.

    Parameters
    ----------
    descriptor : BackendDescriptor
        The source to reach.
    timeout : float
        Per-request timeout in seconds.
    max_pages : int
        Cap on ``Link: rel="next"`` pages followed when building a name index.
    transport : httpx.AsyncBaseTransport | None
        Optional transport override (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        descriptor: BackendDescriptor,
        timeout: float = 10.0,
        max_pages: int = 50,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(descriptor)
        self.max_pages = max_pages
        self._client = httpx.AsyncClient(
            base_url=descriptor.root_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    # -- helpers -------------------------------------------------------------

    def _headers(self, headers: Mapping[str, str] | None) -> dict[str, str]:
        if headers is not None:
            return dict(headers)
        # Internal calls (refresh, health) only ever carry the source's own key
        if self.descriptor.api_key:
            return {"Authorization": f"Bearer {self.descriptor.api_key}"}
        return {}

    async def _get_json(
        self,
        path: str,
        headers: Mapping[str, str] | None = None,
        params: list[tuple[str, str]] | None = None,
    ) -> tuple[Any, httpx.Response]:
        try:
            resp = await self._client.get(path, headers=self._headers(headers), params=params)
            resp.raise_for_status()
            return resp.json(), resp
        except httpx.HTTPStatusError as exc:
            raise BackendUnavailable(
                self.source_id, f"{path} returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise BackendUnavailable(self.source_id, f"{path}: {exc}") from exc
        except ValueError as exc:
            raise BackendUnavailable(self.source_id, f"{path} did not return JSON") from exc

    # -- adapter interface ---------------------------------------------------

    async def get_root(self, headers: Mapping[str, str] | None = None) -> dict:
        data, _ = await self._get_json("/", headers)
        return data if isinstance(data, dict) else {}

    async def get_model(self, headers: Mapping[str, str] | None = None) -> dict:
        data, _ = await self._get_json("/model", headers)
        if not isinstance(data, dict):
            raise BackendUnavailable(self.source_id, "model document is not an object")
        return data

    async def get_capabilities(self, headers: Mapping[str, str] | None = None) -> dict:
        data, _ = await self._get_json("/capabilities", headers)
        if not isinstance(data, dict):
            raise BackendUnavailable(self.source_id, "capabilities document is not an object")
        return data

    async def list_collection(
        self,
        path: str,
        headers: Mapping[str, str] | None = None,
    ) -> list[IndexEntry]:
        """Build the name index of a collection, following ``rel="next"`` links."""
        entries: list[IndexEntry] = []
        url: str | None = path
        pages = 0
        while url and pages < self.max_pages:
            data, resp = await self._get_json(url, headers)
            pages += 1
            if isinstance(data, dict):
                for resource_id, item in data.items():
                    name = item.get("name") if isinstance(item, dict) else None
                    entries.append(IndexEntry(resource_id=str(resource_id), name=str(name or resource_id)))
            url = resp.links.get("next", {}).get("url")

        if url:
            logger.warning(
                "Name index for %s%s truncated after %d pages",
                self.source_id, path, pages,
            )
        return entries

    async def get_resource(
        self,
        path: str,
        params: list[tuple[str, str]] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> UpstreamResponse:
        try:
            resp = await self._client.get(path, params=params, headers=self._headers(headers))
        except httpx.HTTPError as exc:
            raise BackendUnavailable(self.source_id, f"{path}: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {"error": "upstream_error", "message": resp.text[:500]}

        return UpstreamResponse(
            status_code=resp.status_code,
            body=body,
            headers={k: v for k, v in resp.headers.items() if k.lower() in _PASSTHROUGH_HEADERS},
        )

    async def get_resource_metadata(
        self,
        collection_path: str,
        resource_id: str,
        headers: Mapping[str, str] | None = None,
    ) -> dict:
        path = f"{collection_path.rstrip('/')}/{quote(resource_id, safe='')}"
        try:
            resp = await self._client.get(path, headers=self._headers(headers))
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise EnrichmentFailure(resource_id, f"status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise EnrichmentFailure(resource_id, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise EnrichmentFailure(resource_id, "response is not JSON") from exc

        if not isinstance(data, dict):
            raise EnrichmentFailure(resource_id, "metadata is not an object")
        return data

    async def check_health(self) -> bool:
        try:
            resp = await self._client.get("/health", headers=self._headers(None))
        except httpx.HTTPError:
            return False
        return resp.status_code < 500

    async def aclose(self) -> None:
        await self._client.aclose()

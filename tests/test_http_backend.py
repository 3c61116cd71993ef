"""Tests for the HTTP backend adapter against a mock transport."""

import httpx
import pytest

from fakes import descriptor
from xbridge.backends.http import HttpBackend
from xbridge.errors import BackendUnavailable, EnrichmentFailure

BASE = "http://npm:3000"
COLLECTION = "/noderegistries/npmjs.org/packages"


def _backend(handler, api_key: str = "", max_pages: int = 50) -> HttpBackend:
    return HttpBackend(
        descriptor("noderegistries", url=BASE, api_key=api_key),
        max_pages=max_pages,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_get_model_uses_source_key():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"groups": {"noderegistries": {}}})

    backend = _backend(handler, api_key="npm-secret")
    model = await backend.get_model()

    assert model == {"groups": {"noderegistries": {}}}
    assert seen[0].url.path == "/model"
    assert seen[0].headers["authorization"] == "Bearer npm-secret"
    await backend.aclose()


@pytest.mark.asyncio
async def test_explicit_headers_replace_internal_credential():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    backend = _backend(handler, api_key="npm-secret")
    await backend.get_resource("/noderegistries", headers={"x-request-id": "r1"})

    assert "authorization" not in seen[0].headers
    assert seen[0].headers["x-request-id"] == "r1"
    await backend.aclose()


@pytest.mark.asyncio
async def test_server_error_is_backend_unavailable():
    backend = _backend(lambda request: httpx.Response(503, text="down"))
    with pytest.raises(BackendUnavailable) as info:
        await backend.get_capabilities()
    assert "503" in str(info.value)
    await backend.aclose()


@pytest.mark.asyncio
async def test_connection_error_is_backend_unavailable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    backend = _backend(handler)
    with pytest.raises(BackendUnavailable):
        await backend.get_model()
    assert not await backend.check_health()
    await backend.aclose()


@pytest.mark.asyncio
async def test_non_json_model_is_backend_unavailable():
    backend = _backend(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(BackendUnavailable):
        await backend.get_model()
    await backend.aclose()


@pytest.mark.asyncio
async def test_list_collection_follows_next_links():
    def handler(request):
        page = request.url.params.get("page", "1")
        if page == "1":
            return httpx.Response(
                200,
                json={"express": {"name": "express"}, "react": {}},
                headers={"Link": f'<{BASE}{COLLECTION}?page=2>; rel="next"'},
            )
        return httpx.Response(200, json={"vue": {"name": "vue"}})

    backend = _backend(handler)
    entries = await backend.list_collection(COLLECTION)

    assert [(e.resource_id, e.name) for e in entries] == [
        ("express", "express"),
        ("react", "react"),
        ("vue", "vue"),
    ]
    await backend.aclose()


@pytest.mark.asyncio
async def test_list_collection_stops_at_page_cap():
    calls = []

    def handler(request):
        calls.append(request)
        n = int(request.url.params.get("page", "1"))
        return httpx.Response(
            200,
            json={f"pkg-{n}": {}},
            headers={"Link": f'<{BASE}{COLLECTION}?page={n + 1}>; rel="next"'},
        )

    backend = _backend(handler, max_pages=3)
    entries = await backend.list_collection(COLLECTION)
    assert len(calls) == 3
    assert [e.resource_id for e in entries] == ["pkg-1", "pkg-2", "pkg-3"]
    await backend.aclose()


@pytest.mark.asyncio
async def test_get_resource_passes_status_and_body_through():
    def handler(request):
        return httpx.Response(404, json={"error": "not_found"}, headers={"ETag": '"1"', "X-Other": "x"})

    backend = _backend(handler)
    upstream = await backend.get_resource("/noderegistries/npmjs.org/packages/nope")

    assert upstream.status_code == 404
    assert upstream.body == {"error": "not_found"}
    assert upstream.headers.get("etag") == '"1"'
    assert "x-other" not in upstream.headers
    await backend.aclose()


@pytest.mark.asyncio
async def test_get_resource_forwards_query_parameters():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    backend = _backend(handler)
    await backend.get_resource(COLLECTION, params=[("limit", "10"), ("inline", "versions")])
    assert seen[0].url.params.get("limit") == "10"
    assert seen[0].url.params.get("inline") == "versions"
    await backend.aclose()


@pytest.mark.asyncio
async def test_get_resource_metadata_encodes_id():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"name": "@types/node"})

    backend = _backend(handler)
    data = await backend.get_resource_metadata(COLLECTION, "@types/node")

    assert data == {"name": "@types/node"}
    assert seen[0].url.raw_path.endswith(b"/packages/%40types%2Fnode")
    await backend.aclose()


@pytest.mark.asyncio
async def test_metadata_failure_is_enrichment_failure():
    backend = _backend(lambda request: httpx.Response(500))
    with pytest.raises(EnrichmentFailure) as info:
        await backend.get_resource_metadata(COLLECTION, "express")
    assert info.value.resource_id == "express"
    await backend.aclose()


@pytest.mark.asyncio
async def test_check_health():
    backend = _backend(lambda request: httpx.Response(200, json={"status": "ok"}))
    assert await backend.check_health()
    await backend.aclose()

from __future__ import annotations

import json

import httpx
import pytest

from coordinator.core.config import HttpToolSettings
from coordinator.services.http_tools import HttpHealthProbe, HttpToolHandler, is_http_endpoint
from coordinator.tools.exceptions import RemoteCallFailedError
from coordinator.tools.models import HealthCheckConfig
from tests.helpers.stubs import make_tool


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_is_http_endpoint() -> None:
    assert is_http_endpoint("http://tools.local")
    assert is_http_endpoint("HTTPS://tools.local")
    assert not is_http_endpoint("lambda://checkout-handler")
    assert not is_http_endpoint("")


@pytest.mark.asyncio
async def test_handler_posts_parameters_and_decodes_json() -> None:
    seen: dict = {}

    def respond(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"items": ["boots"]})

    definition = make_tool("search", endpoint="http://tools.local/search")
    async with _client(respond) as client:
        handler = HttpToolHandler(definition, HttpToolSettings(invoke_path="/invoke"), client=client)
        result = await handler({"query": "boots", "tenant_id": "tenant-a"}, timeout_seconds=1.0)

    assert result == {"items": ["boots"]}
    assert seen["url"] == "http://tools.local/search/invoke"
    assert seen["body"] == {"query": "boots", "tenant_id": "tenant-a"}


@pytest.mark.asyncio
async def test_handler_returns_text_for_non_json_bodies() -> None:
    definition = make_tool("search")
    async with _client(lambda request: httpx.Response(200, text="plain")) as client:
        result = await HttpToolHandler(definition, client=client)({}, timeout_seconds=1.0)
    assert result == "plain"


@pytest.mark.asyncio
async def test_handler_raises_on_error_status() -> None:
    definition = make_tool("search")
    async with _client(lambda request: httpx.Response(503)) as client:
        handler = HttpToolHandler(definition, client=client)
        with pytest.raises(RemoteCallFailedError, match="HTTP 503"):
            await handler({}, timeout_seconds=1.0)


@pytest.mark.asyncio
async def test_handler_wraps_transport_errors() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(refuse) as client:
        handler = HttpToolHandler(make_tool("search"), client=client)
        with pytest.raises(RemoteCallFailedError, match="request failed"):
            await handler({}, timeout_seconds=1.0)


@pytest.mark.asyncio
async def test_handler_rejects_non_http_endpoints() -> None:
    async with _client(lambda request: httpx.Response(200)) as client:
        handler = HttpToolHandler(make_tool("checkout", endpoint="lambda://checkout"), client=client)
        with pytest.raises(RemoteCallFailedError, match="not reachable over HTTP"):
            await handler({}, timeout_seconds=1.0)


@pytest.mark.asyncio
async def test_probe_reports_status_of_health_path() -> None:
    paths: list[str] = []

    def respond(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200 if request.url.path.endswith("/healthz") else 500)

    async with _client(respond) as client:
        probe = HttpHealthProbe(client=client)
        healthy = await probe(make_tool("search", health_check=HealthCheckConfig(path="/healthz")))
        unhealthy = await probe(make_tool("ranker"))

    assert healthy.healthy is True and healthy.status_code == 200
    assert unhealthy.healthy is False and unhealthy.status_code == 500
    assert paths == ["/search/healthz", "/ranker/health"]


@pytest.mark.asyncio
async def test_probe_handles_transport_errors_and_skips_non_http() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(refuse) as client:
        probe = HttpHealthProbe(client=client)
        down = await probe(make_tool("search"))
        skipped = await probe(make_tool("assistant", endpoint="aws://assistant"))

    assert down.healthy is False
    assert down.detail == "refused"
    assert skipped.healthy is True
    assert skipped.detail == "unprobed"

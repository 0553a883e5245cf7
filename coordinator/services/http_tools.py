from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

import httpx

from ..core.config import HttpToolSettings
from ..core.logging import get_logger
from ..tools.exceptions import RemoteCallFailedError
from ..tools.models import ToolDefinition

logger = get_logger(name=__name__)

_HTTP_SCHEMES = ("http://", "https://")


def is_http_endpoint(endpoint: str) -> bool:
    return endpoint.lower().startswith(_HTTP_SCHEMES)


class HttpToolHandler:
    """POST invocation parameters to a tool endpoint and return the decoded body."""

    def __init__(
        self,
        definition: ToolDefinition,
        settings: HttpToolSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._definition = definition
        self._settings = settings or HttpToolSettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(definition.timeout_seconds),
            headers=self._settings.extra_headers,
            verify=self._settings.verify_ssl,
        )

    @property
    def url(self) -> str:
        return _join(self._definition.endpoint, self._settings.invoke_path)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __call__(self, parameters: Mapping[str, Any], *, timeout_seconds: float) -> Any:
        tool_id = self._definition.id
        if not is_http_endpoint(self._definition.endpoint):
            raise RemoteCallFailedError(
                f"Tool '{tool_id}' endpoint '{self._definition.endpoint}' is not reachable over HTTP"
            )
        try:
            response = await self._client.post(
                self.url,
                json=dict(parameters),
                timeout=httpx.Timeout(timeout_seconds),
            )
        except httpx.RequestError as exc:
            raise RemoteCallFailedError(f"Tool '{tool_id}' request failed: {exc}") from exc

        if not response.is_success:
            logger.warning(
                "http_tool_error_status",
                tool=tool_id,
                status=response.status_code,
                url=self.url,
            )
            raise RemoteCallFailedError(f"Tool '{tool_id}' returned HTTP {response.status_code}")
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text


@dataclass(slots=True)
class ProbeResult:
    healthy: bool
    checked_at: datetime
    latency_ms: float = 0.0
    status_code: int | None = None
    detail: str | None = None


class HttpHealthProbe:
    """GET ``endpoint + health_check.path``; any 2xx answer counts as healthy.

    Endpoints that are not plain HTTP (queues, cloud function ARNs and the
    like) cannot be probed from here and are reported healthy.
    """

    def __init__(self, settings: HttpToolSettings | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings or HttpToolSettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers=self._settings.extra_headers,
            verify=self._settings.verify_ssl,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __call__(self, definition: ToolDefinition) -> ProbeResult:
        if not is_http_endpoint(definition.endpoint):
            return ProbeResult(healthy=True, checked_at=_utcnow(), detail="unprobed")

        url = _join(definition.endpoint, definition.health_check.path)
        start = time.perf_counter()
        try:
            response = await self._client.get(url, timeout=httpx.Timeout(definition.health_check.timeout_seconds))
        except httpx.RequestError as exc:
            return ProbeResult(
                healthy=False,
                checked_at=_utcnow(),
                latency_ms=(time.perf_counter() - start) * 1000,
                detail=str(exc) or type(exc).__name__,
            )
        return ProbeResult(
            healthy=response.is_success,
            checked_at=_utcnow(),
            latency_ms=(time.perf_counter() - start) * 1000,
            status_code=response.status_code,
        )


def _join(endpoint: str, path: str) -> str:
    if not path:
        return endpoint
    return f"{endpoint.rstrip('/')}/{path.lstrip('/')}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["HttpHealthProbe", "HttpToolHandler", "ProbeResult", "is_http_endpoint"]

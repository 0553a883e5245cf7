"""
Tool coordination service.

Owns the registry, the invocation executor, the plan coordinator and one
background health-check task per registered tool. Build instances with
``create_tool_coordination_service``; there is no module-level singleton.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from ..core import metrics
from ..core.audit import AuditSink, default_audit_sink
from ..core.config import Settings, get_settings
from ..core.logging import get_logger
from ..orchestration.coordinator import PlanCoordinator
from ..orchestration.plan import CoordinatedPlanResult, ExecutionPlan
from ..tools.circuit_breaker import operation_key
from ..tools.exceptions import ToolNotFoundError
from ..tools.executor import InvocationExecutor
from ..tools.models import (
    BulkheadStats,
    CircuitState,
    HealthStatus,
    SystemHealth,
    ToolDefinition,
    ToolHealth,
    ToolInvocation,
    ToolResult,
)
from ..tools.registry import ToolHandler, ToolRegistry, normalize_tool_name
from .catalog import default_tool_catalog
from .http_tools import HttpHealthProbe, HttpToolHandler, ProbeResult

logger = get_logger(name=__name__)

HealthProbe = Callable[[ToolDefinition], Awaitable[ProbeResult]]

_STATUS_RANK: dict[str, int] = {"healthy": 0, "degraded": 1, "unhealthy": 2}
_CIRCUIT_RANK = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


class ToolCoordinationService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        registry: ToolRegistry | None = None,
        probe: HealthProbe | None = None,
        sink: AuditSink | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        prometheus_enabled = self._settings.observability.prometheus_enabled
        self._registry = registry or ToolRegistry(self._settings.bulkhead, clock=clock)
        self._sink = sink if sink is not None else default_audit_sink(prometheus_enabled=prometheus_enabled)
        self._executor = InvocationExecutor(
            self._registry,
            sink=self._sink,
            isolate_tenants=self._settings.circuit_breaker.isolate_tenants,
        )
        self._coordinator = PlanCoordinator(
            self._executor,
            sink=self._sink,
            prometheus_enabled=prometheus_enabled,
        )
        self._closeables: list[Any] = []
        if probe is None:
            http_probe = HttpHealthProbe(self._settings.http)
            self._closeables.append(http_probe)
            probe = http_probe
        self._probe = probe
        self._health_tasks: dict[str, asyncio.Task[None]] = {}
        self._started = False

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def settings(self) -> Settings:
        return self._settings

    # Registration

    def register_tool(self, definition: ToolDefinition, handler: ToolHandler) -> None:
        """Register (or replace) a tool; replacing resets its breaker and health task."""
        self._registry.register(definition, handler)
        self._cancel_health_task(definition.id)
        if _running_loop() is not None:
            self._start_health_task(definition)
        logger.info("tool_registered", tool=definition.id, name=definition.name, endpoint=definition.endpoint)

    def register_default_tools(self) -> None:
        for definition in default_tool_catalog(self._settings.tools):
            handler = HttpToolHandler(definition, self._settings.http)
            self._closeables.append(handler)
            self.register_tool(definition, handler)

    def deregister_tool(self, tool_id: str) -> bool:
        self._cancel_health_task(tool_id)
        removed = self._registry.unregister(tool_id)
        if removed is None:
            return False
        logger.info("tool_deregistered", tool=removed.id)
        return True

    # Invocation

    async def invoke_tool(self, invocation: ToolInvocation) -> ToolResult:
        return await self._executor.invoke(invocation)

    async def execute_coordinated_plan(
        self,
        plan: ExecutionPlan,
        tenant_id: str,
        user_id: str | None = None,
    ) -> CoordinatedPlanResult:
        return await self._coordinator.execute(plan, tenant_id, user_id)

    # Health and stats

    def get_tool_health(self, tool_id: str) -> ToolHealth:
        definition = self._registry.get(tool_id)
        if definition is None:
            return ToolHealth(tool_id=tool_id, status="unhealthy", circuit_breaker_state="unknown", error_rate=1.0)

        state = self._registry.require(tool_id)
        circuit = self._circuit_state(definition.id)
        error_rate = self._registry.error_rate(definition.id)
        status: HealthStatus = "healthy"
        if circuit is CircuitState.OPEN:
            status = "unhealthy"
        elif (
            circuit is CircuitState.HALF_OPEN
            or error_rate > self._settings.health_checks.degraded_error_rate
            or state.last_probe_healthy is False
        ):
            status = "degraded"
        return ToolHealth(
            tool_id=definition.id,
            status=status,
            circuit_breaker_state=circuit,
            last_health_check=state.last_health_check,
            last_probe_healthy=state.last_probe_healthy,
            error_rate=error_rate,
        )

    def get_bulkhead_stats(self, tenant_id: str) -> BulkheadStats:
        """Stats for a tenant; tenants never seen get zeroed stats and no bulkhead is created."""
        bulkhead = self._registry.existing_bulkhead(tenant_id)
        return bulkhead.get_stats() if bulkhead is not None else BulkheadStats(tenant_id=tenant_id)

    def get_system_health(self) -> SystemHealth:
        tools_health = {tool_id: self.get_tool_health(tool_id) for tool_id, _ in self._registry.items()}
        bulkhead_stats = {tenant: bulkhead.get_stats() for tenant, bulkhead in self._registry.bulkheads().items()}
        status: HealthStatus = "healthy"
        for health in tools_health.values():
            if _STATUS_RANK[health.status] > _STATUS_RANK[status]:
                status = health.status
        return SystemHealth(status=status, tools_health=tools_health, bulkhead_stats=bulkhead_stats)

    def reset_circuit(self, tool_id: str, tenant_id: str | None = None) -> None:
        """Force a tool's breaker back to CLOSED.

        With tenant isolation enabled and no tenant given, every tenant key of
        the tool is reset.
        """
        definition = self._registry.get(tool_id)
        if definition is None:
            raise ToolNotFoundError(f"Tool not found: {tool_id}")
        breaker = self._registry.existing_breaker(definition.id)
        if breaker is None:
            return
        isolate = self._settings.circuit_breaker.isolate_tenants
        if isolate and tenant_id is None:
            keys = breaker.keys()
        else:
            keys = [operation_key(definition.id, tenant_id, isolate_tenants=isolate)]
        for key in keys:
            breaker.reset(key)
        logger.info("circuit_reset", tool=definition.id, tenant=tenant_id, keys=keys)

    # Health checks

    async def probe_tool(self, tool_id: str) -> ProbeResult:
        """Run one reachability probe and record it; probes never touch the breaker."""
        definition = self._registry.get(tool_id)
        if definition is None:
            raise ToolNotFoundError(f"Tool not found: {tool_id}")
        timeout = definition.health_check.timeout_seconds
        try:
            result = await asyncio.wait_for(self._probe(definition), timeout=timeout)
        except asyncio.TimeoutError:
            result = ProbeResult(healthy=False, checked_at=_utcnow(), detail=f"timed out after {timeout:.2f}s")
        except Exception as exc:
            result = ProbeResult(healthy=False, checked_at=_utcnow(), detail=str(exc) or type(exc).__name__)

        self._registry.record_probe(definition.id, healthy=result.healthy, checked_at=result.checked_at)
        if self._settings.observability.prometheus_enabled:
            metrics.record_health_probe(tool=definition.id, healthy=result.healthy)
        if result.healthy:
            logger.debug("health_probe_succeeded", tool=definition.id, latency_ms=round(result.latency_ms, 3))
        else:
            logger.warning(
                "health_probe_failed",
                tool=definition.id,
                status_code=result.status_code,
                detail=result.detail,
            )
        return result

    async def _health_loop(self, definition: ToolDefinition) -> None:
        interval = definition.health_check.interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.probe_tool(definition.id)
            except ToolNotFoundError:
                return
            except Exception as exc:  # pragma: no cover - background error logging
                logger.exception("health_loop_failed", tool=definition.id, error=str(exc))

    def _start_health_task(self, definition: ToolDefinition) -> None:
        if not self._settings.health_checks.enabled:
            return
        key = normalize_tool_name(definition.id)
        task = self._health_tasks.get(key)
        if task is not None and not task.done():
            return
        self._health_tasks[key] = asyncio.create_task(
            self._health_loop(definition),
            name=f"health-check:{definition.id}",
        )

    def _cancel_health_task(self, tool_id: str) -> None:
        task = self._health_tasks.pop(normalize_tool_name(tool_id), None)
        if task is not None:
            task.cancel()

    def health_check_tasks(self) -> dict[str, asyncio.Task[None]]:
        return dict(self._health_tasks)

    # Lifecycle

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        for _, state in self._registry.items():
            self._start_health_task(state.definition)
        logger.info("coordination_service_started", tools=self._registry.list())

    async def shutdown(self) -> None:
        tasks = list(self._health_tasks.values())
        self._health_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for closeable in self._closeables:
            try:
                await closeable.aclose()
            except Exception as exc:  # pragma: no cover - shutdown error logging
                logger.warning("client_close_failed", client=type(closeable).__name__, error=str(exc))
        self._closeables.clear()
        self._started = False
        logger.info("coordination_service_stopped", cancelled_health_checks=len(tasks))

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["ToolCoordinationService"]:
        await self.start()
        try:
            yield self
        finally:
            await self.shutdown()

    def _circuit_state(self, tool_id: str) -> CircuitState:
        breaker = self._registry.existing_breaker(tool_id)
        if breaker is None:
            return CircuitState.CLOSED
        worst = CircuitState.CLOSED
        for key in breaker.keys():
            state = breaker.state(key)
            if _CIRCUIT_RANK[state] > _CIRCUIT_RANK[worst]:
                worst = state
        return worst


def create_tool_coordination_service(
    settings: Settings | None = None,
    *,
    registry: ToolRegistry | None = None,
    probe: HealthProbe | None = None,
    sink: AuditSink | None = None,
    clock: Callable[[], float] | None = None,
) -> ToolCoordinationService:
    settings = settings or get_settings()
    service = ToolCoordinationService(settings, registry=registry, probe=probe, sink=sink, clock=clock)
    if settings.tools.register_defaults:
        service.register_default_tools()
    return service


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["HealthProbe", "ToolCoordinationService", "create_tool_coordination_service"]

from __future__ import annotations

import re
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Iterator, Mapping, Protocol, Tuple

from ..core.config import BulkheadSettings
from .bulkhead import TenantBulkhead
from .circuit_breaker import CircuitBreaker
from .exceptions import ToolNotFoundError
from .models import ToolDefinition

__all__ = ["normalize_tool_name", "ToolHandler", "ToolRegistry", "ToolRuntimeState"]


_NAME_PATTERN = re.compile(r"[\\/\s_\-]+")
_ALIAS_COLLAPSE = re.compile(r"\.+")


def normalize_tool_name(name: str) -> str:
    """Return a normalized identifier used for registry lookups."""
    if not isinstance(name, str):
        raise TypeError("Tool name must be a string")
    collapsed = _NAME_PATTERN.sub(".", name.strip())
    collapsed = _ALIAS_COLLAPSE.sub(".", collapsed)
    collapsed = collapsed.strip(".")
    return collapsed.lower()


class ToolHandler(Protocol):
    """Remote call for one tool; must raise on failure, never return an error sentinel."""

    async def __call__(self, parameters: Mapping[str, Any], *, timeout_seconds: float) -> Any:
        ...


@dataclass
class ToolRuntimeState:
    """Mutable bookkeeping kept next to an immutable tool definition."""

    definition: ToolDefinition
    handler: ToolHandler
    outcomes: Deque[Tuple[float, bool]] = field(default_factory=deque)
    last_health_check: datetime | None = None
    last_probe_healthy: bool | None = None


class ToolRegistry:
    """Registry of tool definitions, their handlers, breakers, and tenant bulkheads."""

    def __init__(
        self,
        bulkhead_settings: BulkheadSettings | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._bulkhead_settings = bulkhead_settings or BulkheadSettings()
        self._clock = clock or time.monotonic
        self._tools: Dict[str, ToolRuntimeState] = {}
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._bulkheads: Dict[str, TenantBulkhead] = {}
        self._lock = threading.Lock()

    def register(self, definition: ToolDefinition, handler: ToolHandler) -> None:
        """Register or replace a tool; ids that normalize to another tool's key are refused."""
        key = normalize_tool_name(definition.id)
        with self._lock:
            existing = self._tools.get(key)
            if existing is not None and existing.definition.id != definition.id:
                raise ValueError(
                    f"Tool id '{definition.id}' collides with registered tool '{existing.definition.id}'"
                )
            self._tools[key] = ToolRuntimeState(definition=definition, handler=handler)
            self._breakers.pop(key, None)

    def unregister(self, tool_id: str) -> ToolDefinition | None:
        key = normalize_tool_name(tool_id)
        with self._lock:
            state = self._tools.pop(key, None)
            self._breakers.pop(key, None)
        return state.definition if state else None

    def clear(self) -> None:
        with self._lock:
            self._tools.clear()
            self._breakers.clear()
            self._bulkheads.clear()

    def get(self, tool_id: str) -> ToolDefinition | None:
        state = self._tools.get(normalize_tool_name(tool_id))
        return state.definition if state else None

    def require(self, tool_id: str) -> ToolRuntimeState:
        state = self._tools.get(normalize_tool_name(tool_id))
        if state is None:
            raise ToolNotFoundError(f"Tool not found: {tool_id}")
        return state

    def handler(self, tool_id: str) -> ToolHandler:
        return self.require(tool_id).handler

    def __contains__(self, tool_id: object) -> bool:
        return isinstance(tool_id, str) and normalize_tool_name(tool_id) in self._tools

    def list(self) -> list[str]:
        return sorted(state.definition.id for state in self._tools.values())

    def items(self) -> Iterator[Tuple[str, ToolRuntimeState]]:
        for state in list(self._tools.values()):
            yield state.definition.id, state

    def breaker_for(self, tool_id: str) -> CircuitBreaker:
        key = normalize_tool_name(tool_id)
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(clock=self._clock)
                self._breakers[key] = breaker
            return breaker

    def existing_breaker(self, tool_id: str) -> CircuitBreaker | None:
        return self._breakers.get(normalize_tool_name(tool_id))

    def bulkhead_for(self, tenant_id: str) -> TenantBulkhead:
        with self._lock:
            bulkhead = self._bulkheads.get(tenant_id)
            if bulkhead is None:
                limits = self._bulkhead_settings.limits_for(tenant_id)
                bulkhead = TenantBulkhead(
                    tenant_id,
                    max_concurrent_requests=limits.max_concurrent_requests,
                    queue_size=limits.queue_size,
                    latency_window=self._bulkhead_settings.latency_window,
                )
                self._bulkheads[tenant_id] = bulkhead
            return bulkhead

    def existing_bulkhead(self, tenant_id: str) -> TenantBulkhead | None:
        return self._bulkheads.get(tenant_id)

    def bulkheads(self) -> dict[str, TenantBulkhead]:
        with self._lock:
            return dict(self._bulkheads)

    def record_outcome(self, tool_id: str, success: bool) -> None:
        state = self._tools.get(normalize_tool_name(tool_id))
        if state is None:
            return
        now = self._clock()
        with self._lock:
            state.outcomes.append((now, success))
            self._prune_locked(state, now)

    def error_rate(self, tool_id: str) -> float:
        state = self._tools.get(normalize_tool_name(tool_id))
        if state is None:
            return 1.0
        with self._lock:
            self._prune_locked(state, self._clock())
            if not state.outcomes:
                return 0.0
            failures = sum(1 for _, ok in state.outcomes if not ok)
            return failures / len(state.outcomes)

    def record_probe(self, tool_id: str, *, healthy: bool, checked_at: datetime) -> None:
        state = self._tools.get(normalize_tool_name(tool_id))
        if state is None:
            return
        state.last_health_check = checked_at
        state.last_probe_healthy = healthy

    def _prune_locked(self, state: ToolRuntimeState, now: float) -> None:
        boundary = now - state.definition.circuit_breaker_config.monitoring_window_seconds
        while state.outcomes and state.outcomes[0][0] < boundary:
            state.outcomes.popleft()

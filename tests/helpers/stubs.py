from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from coordinator.core.audit import AuditEvent
from coordinator.services.http_tools import ProbeResult
from coordinator.tools.models import ToolDefinition


class FakeClock:
    """Manually advanced monotonic clock for breaker and error-window tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedHandler:
    """Tool handler that replays a script of return values and exceptions.

    Once the script is exhausted the last entry repeats.
    """

    def __init__(self, outcomes: Iterable[Any] = ("ok",)) -> None:
        self._outcomes = list(outcomes) or ["ok"]
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, parameters: Mapping[str, Any], *, timeout_seconds: float) -> Any:
        self.calls.append({"parameters": dict(parameters), "timeout_seconds": timeout_seconds})
        index = min(len(self.calls) - 1, len(self._outcomes) - 1)
        outcome = self._outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, type) and issubclass(outcome, BaseException):
            raise outcome()
        return outcome

    @property
    def call_count(self) -> int:
        return len(self.calls)


class SlowHandler:
    """Handler that sleeps before answering; optionally gated by an event."""

    def __init__(self, delay: float = 0.0, *, result: Any = "slow", gate: asyncio.Event | None = None) -> None:
        self.delay = delay
        self.result = result
        self.gate = gate
        self.in_flight = 0
        self.max_in_flight = 0
        self.call_count = 0

    async def __call__(self, parameters: Mapping[str, Any], *, timeout_seconds: float) -> Any:  # noqa: ARG002
        self.call_count += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            return self.result
        finally:
            self.in_flight -= 1


class OrderRecorder:
    """Shared log of tool ids in call order across several handlers."""

    def __init__(self) -> None:
        self.order: list[str] = []

    def handler(self, tool_id: str, outcome: Any = "ok") -> "RecordingHandler":
        return RecordingHandler(tool_id, self.order, outcome)


class RecordingHandler:
    def __init__(self, tool_id: str, order: list[str], outcome: Any = "ok") -> None:
        self.tool_id = tool_id
        self.order = order
        self.outcome = outcome
        self.parameters: list[dict[str, Any]] = []

    async def __call__(self, parameters: Mapping[str, Any], *, timeout_seconds: float) -> Any:  # noqa: ARG002
        self.order.append(self.tool_id)
        self.parameters.append(dict(parameters))
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> list[AuditEvent]:
        return [event for event in self.events if event.kind == kind]


class ExplodingSink:
    def record(self, event: AuditEvent) -> None:  # noqa: ARG002
        raise RuntimeError("sink offline")


class StubProbe:
    """Health probe returning a fixed verdict and recording probed tools."""

    def __init__(self, healthy: bool = True) -> None:
        self.healthy = healthy
        self.probed: list[str] = []

    async def __call__(self, definition: ToolDefinition) -> ProbeResult:
        self.probed.append(definition.id)
        return ProbeResult(healthy=self.healthy, checked_at=datetime.now(timezone.utc))


def make_tool(tool_id: str = "search", **overrides: Any) -> ToolDefinition:
    payload: dict[str, Any] = {
        "id": tool_id,
        "name": tool_id.replace("_", " ").title(),
        "endpoint": f"http://tools.local/{tool_id}",
        "timeout_seconds": 1.0,
    }
    payload.update(overrides)
    return ToolDefinition(**payload)

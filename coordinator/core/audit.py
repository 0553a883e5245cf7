from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Literal, Protocol

from pydantic import BaseModel, Field

from . import metrics
from .logging import get_logger

logger = get_logger(name=__name__)


class AuditEvent(BaseModel):
    """Outcome record emitted after every tool result and every plan aggregation."""

    kind: Literal["tool", "plan"]
    tenant_id: str
    success: bool
    latency_ms: float
    retry_count: int = 0
    tool_id: str | None = None
    plan_id: str | None = None
    error_kind: str | None = None
    degraded: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Write audit events to the structured log."""

    def __init__(self, *, name: str = "audit") -> None:
        self._logger = get_logger(name=name)

    def record(self, event: AuditEvent) -> None:
        self._logger.info("audit_event", **event.model_dump(mode="json"))


class PrometheusAuditSink:
    """Translate audit events into Prometheus series."""

    def record(self, event: AuditEvent) -> None:
        latency = event.latency_ms / 1000.0
        if event.kind == "tool":
            if event.degraded:
                outcome = "fallback"
            elif event.success:
                outcome = "success"
            else:
                outcome = (event.error_kind or "failure").lower()
            metrics.observe_tool_invocation(tool=event.tool_id or "unknown", outcome=outcome, latency=latency)
        # Plan series are recorded by the coordinator, which knows the plan mode.


class CompositeAuditSink:
    def __init__(self, sinks: Iterable[AuditSink]) -> None:
        self._sinks = tuple(sinks)

    def record(self, event: AuditEvent) -> None:
        for sink in self._sinks:
            emit_safely(sink, event)


def emit_safely(sink: AuditSink | None, event: AuditEvent) -> None:
    """Fire-and-forget delivery; sink failures are logged and never reach the caller."""
    if sink is None:
        return
    try:
        sink.record(event)
    except Exception as exc:
        logger.warning(
            "audit_sink_failed",
            sink=type(sink).__name__,
            kind=event.kind,
            error=str(exc),
        )


def default_audit_sink(*, prometheus_enabled: bool = True) -> AuditSink:
    sinks: list[AuditSink] = [LoggingAuditSink()]
    if prometheus_enabled:
        sinks.append(PrometheusAuditSink())
    return CompositeAuditSink(sinks)


__all__ = [
    "AuditEvent",
    "AuditSink",
    "CompositeAuditSink",
    "LoggingAuditSink",
    "PrometheusAuditSink",
    "default_audit_sink",
    "emit_safely",
]

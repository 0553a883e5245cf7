from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


HealthStatus = Literal["healthy", "degraded", "unhealthy"]


class RetryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(0, ge=0)
    backoff_seconds: float = Field(0.5, ge=0.0)
    backoff_multiplier: float = Field(2.0, ge=1.0)


class CircuitBreakerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(5, ge=1)
    reset_timeout_seconds: float = Field(30.0, ge=0.0)
    monitoring_window_seconds: float = Field(60.0, gt=0.0)


class BulkheadConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_concurrent_requests: int = Field(10, ge=1)
    queue_size: int = Field(20, ge=0)


class HealthCheckConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str = "/health"
    interval_seconds: float = Field(30.0, gt=0.0)
    timeout_seconds: float = Field(5.0, gt=0.0)


class ToolDefinition(BaseModel):
    """Operational policy for one remote tool; immutable once registered."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    endpoint: str = ""
    timeout_seconds: float = Field(5.0, gt=0.0)
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker_config: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    bulkhead_config: BulkheadConfig = Field(
        default_factory=BulkheadConfig,
        description="Informational only; tenant admission limits come from the bulkhead settings.",
    )
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)


class ToolInvocation(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    tool_id: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: float | None = Field(None, gt=0.0)
    retry_config: RetryConfig | None = None
    tenant_id: str
    priority: int = 0


class ToolResult(BaseModel):
    invocation_id: str
    tool_id: str
    success: bool
    result: Any = None
    error: str | None = None
    error_kind: str | None = None
    latency_ms: float = 0.0
    retry_count: int = 0
    degraded: bool = False
    timestamp: datetime = Field(default_factory=_utcnow)


class CircuitBreakerStats(BaseModel):
    key: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: float | None = None


class BulkheadStats(BaseModel):
    tenant_id: str
    active_requests: int = 0
    queued_requests: int = 0
    total_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    avg_latency_ms: float = 0.0
    last_activity: datetime = Field(default_factory=_utcnow)


class ToolHealth(BaseModel):
    tool_id: str
    status: HealthStatus
    circuit_breaker_state: CircuitState | Literal["unknown"]
    last_health_check: datetime | None = None
    last_probe_healthy: bool | None = None
    error_rate: float = 0.0


class SystemHealth(BaseModel):
    status: HealthStatus
    tools_health: dict[str, ToolHealth] = Field(default_factory=dict)
    bulkhead_stats: dict[str, BulkheadStats] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)


__all__ = [
    "BulkheadConfig",
    "BulkheadStats",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitState",
    "HealthCheckConfig",
    "HealthStatus",
    "RetryConfig",
    "SystemHealth",
    "ToolDefinition",
    "ToolHealth",
    "ToolInvocation",
    "ToolResult",
]

from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_logs: bool = Field(True, description="Render logs as JSON; falls back to console output when disabled.")


class CircuitBreakerSettings(BaseModel):
    isolate_tenants: bool = Field(
        False,
        description="Track breaker state per tool and tenant instead of per tool.",
    )


class BulkheadLimits(BaseModel):
    max_concurrent_requests: int = Field(20, ge=1)
    queue_size: int = Field(50, ge=0)


class BulkheadSettings(BaseModel):
    defaults: BulkheadLimits = Field(default_factory=BulkheadLimits)  # type: ignore[arg-type]
    tenant_overrides: dict[str, BulkheadLimits] = Field(
        default_factory=dict,
        description="Per-tenant admission limits keyed by tenant id.",
    )
    latency_window: int = Field(100, ge=1, description="Number of latency samples kept per tenant.")

    def limits_for(self, tenant_id: str) -> BulkheadLimits:
        return self.tenant_overrides.get(tenant_id, self.defaults)


class HealthCheckSettings(BaseModel):
    enabled: bool = Field(True, description="Run background reachability probes for registered tools.")
    degraded_error_rate: float = Field(
        0.1,
        ge=0.0,
        le=1.0,
        description="Error rate above which a tool is reported as degraded.",
    )


class ToolCatalogSettings(BaseModel):
    register_defaults: bool = Field(False, description="Register the built-in tool catalog on startup.")
    retrieval_endpoint: str = Field("http://localhost:47334", description="Endpoint for retrieval/prediction tools.")
    checkout_endpoint: str = Field("http://localhost:8081/checkout")
    assistant_endpoint: str = Field("http://localhost:8082/assistant")


class HttpToolSettings(BaseModel):
    verify_ssl: bool = Field(True)
    invoke_path: str = Field("", description="Path appended to a tool endpoint when invoking it.")
    extra_headers: dict[str, str] = Field(default_factory=dict)


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)  # type: ignore[arg-type]
    bulkhead: BulkheadSettings = Field(default_factory=BulkheadSettings)  # type: ignore[arg-type]
    health_checks: HealthCheckSettings = Field(default_factory=HealthCheckSettings)  # type: ignore[arg-type]
    tools: ToolCatalogSettings = Field(default_factory=ToolCatalogSettings)  # type: ignore[arg-type]
    http: HttpToolSettings = Field(default_factory=HttpToolSettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()

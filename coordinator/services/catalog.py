"""Built-in tool definitions registered when ``tools.register_defaults`` is set."""

from __future__ import annotations

from ..core.config import ToolCatalogSettings
from ..tools.models import (
    BulkheadConfig,
    CircuitBreakerConfig,
    HealthCheckConfig,
    RetryConfig,
    ToolDefinition,
)


def default_tool_catalog(settings: ToolCatalogSettings | None = None) -> list[ToolDefinition]:
    settings = settings or ToolCatalogSettings()
    return [
        ToolDefinition(
            id="semantic_retrieval",
            name="Semantic Retrieval",
            endpoint=settings.retrieval_endpoint,
            timeout_seconds=3.0,
            retry_config=RetryConfig(max_retries=2, backoff_seconds=0.5, backoff_multiplier=2.0),
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=5,
                reset_timeout_seconds=30.0,
                monitoring_window_seconds=60.0,
            ),
            bulkhead_config=BulkheadConfig(max_concurrent_requests=10, queue_size=20),
            health_check=HealthCheckConfig(interval_seconds=30.0, timeout_seconds=5.0),
        ),
        ToolDefinition(
            id="product_prediction",
            name="Product Prediction",
            endpoint=settings.retrieval_endpoint,
            timeout_seconds=5.0,
            retry_config=RetryConfig(max_retries=3, backoff_seconds=1.0, backoff_multiplier=2.0),
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=3,
                reset_timeout_seconds=60.0,
                monitoring_window_seconds=120.0,
            ),
            bulkhead_config=BulkheadConfig(max_concurrent_requests=5, queue_size=10),
            health_check=HealthCheckConfig(interval_seconds=30.0, timeout_seconds=5.0),
        ),
        ToolDefinition(
            id="process_checkout",
            name="Process Checkout",
            endpoint=settings.checkout_endpoint,
            timeout_seconds=10.0,
            # Checkout is not idempotent enough for more than one retry.
            retry_config=RetryConfig(max_retries=1, backoff_seconds=2.0, backoff_multiplier=1.0),
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=2,
                reset_timeout_seconds=120.0,
                monitoring_window_seconds=300.0,
            ),
            bulkhead_config=BulkheadConfig(max_concurrent_requests=3, queue_size=5),
            health_check=HealthCheckConfig(interval_seconds=60.0, timeout_seconds=10.0),
        ),
        ToolDefinition(
            id="external_assistant",
            name="External Assistant",
            endpoint=settings.assistant_endpoint,
            timeout_seconds=4.0,
            retry_config=RetryConfig(max_retries=2, backoff_seconds=1.0, backoff_multiplier=2.0),
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=5,
                reset_timeout_seconds=60.0,
                monitoring_window_seconds=120.0,
            ),
            bulkhead_config=BulkheadConfig(max_concurrent_requests=8, queue_size=15),
            health_check=HealthCheckConfig(interval_seconds=60.0, timeout_seconds=5.0),
        ),
    ]


__all__ = ["default_tool_catalog"]

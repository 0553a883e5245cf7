from __future__ import annotations

from datetime import datetime, timezone

import pytest

from coordinator.core.config import BulkheadLimits, BulkheadSettings
from coordinator.tools.exceptions import ToolNotFoundError
from coordinator.tools.models import BulkheadConfig, CircuitBreakerConfig, ToolDefinition
from coordinator.tools.registry import ToolRegistry, normalize_tool_name
from tests.helpers.stubs import FakeClock, ScriptedHandler, make_tool


def test_normalize_tool_name_collapses_separators() -> None:
    assert normalize_tool_name("Research/DuckDuckGo") == "research.duckduckgo"
    assert normalize_tool_name("  semantic_retrieval ") == "semantic.retrieval"
    assert normalize_tool_name("semantic-retrieval") == "semantic.retrieval"
    with pytest.raises(TypeError):
        normalize_tool_name(42)  # type: ignore[arg-type]


def test_register_and_lookup_by_normalized_id() -> None:
    registry = ToolRegistry()
    handler = ScriptedHandler()
    registry.register(make_tool("semantic_retrieval"), handler)

    assert registry.get("Semantic-Retrieval") is not None
    assert registry.handler("semantic.retrieval") is handler
    assert "semantic_retrieval" in registry
    assert registry.list() == ["semantic_retrieval"]


def test_require_unknown_tool_raises() -> None:
    registry = ToolRegistry()
    with pytest.raises(ToolNotFoundError, match="Tool not found: missing"):
        registry.require("missing")


def test_reregistering_replaces_definition_and_breaker() -> None:
    registry = ToolRegistry()
    registry.register(make_tool("search", timeout_seconds=1.0), ScriptedHandler())
    first_breaker = registry.breaker_for("search")
    assert registry.breaker_for("search") is first_breaker

    registry.register(make_tool("search", timeout_seconds=2.0), ScriptedHandler())

    assert registry.get("search").timeout_seconds == 2.0
    assert registry.breaker_for("search") is not first_breaker


def test_ids_colliding_after_normalization_are_refused() -> None:
    registry = ToolRegistry()
    original = ScriptedHandler()
    registry.register(make_tool("foo_bar"), original)
    breaker = registry.breaker_for("foo_bar")

    with pytest.raises(ValueError, match="collides with registered tool 'foo_bar'"):
        registry.register(make_tool("Foo-Bar"), ScriptedHandler())

    assert registry.get("Foo-Bar").id == "foo_bar"
    assert registry.handler("foo_bar") is original
    assert registry.breaker_for("foo_bar") is breaker
    assert registry.list() == ["foo_bar"]


def test_unregister_returns_definition() -> None:
    registry = ToolRegistry()
    registry.register(make_tool("search"), ScriptedHandler())

    removed = registry.unregister("search")
    assert removed is not None and removed.id == "search"
    assert registry.unregister("search") is None
    assert "search" not in registry


def test_bulkheads_are_created_per_tenant_with_overrides() -> None:
    settings = BulkheadSettings(
        defaults=BulkheadLimits(max_concurrent_requests=4, queue_size=8),
        tenant_overrides={"vip": BulkheadLimits(max_concurrent_requests=40, queue_size=80)},
    )
    registry = ToolRegistry(settings)

    default = registry.bulkhead_for("tenant-a")
    vip = registry.bulkhead_for("vip")

    assert registry.bulkhead_for("tenant-a") is default
    assert (default.max_concurrent_requests, default.queue_size) == (4, 8)
    assert (vip.max_concurrent_requests, vip.queue_size) == (40, 80)
    assert set(registry.bulkheads()) == {"tenant-a", "vip"}
    assert registry.existing_bulkhead("nobody") is None


def test_tool_bulkhead_config_does_not_change_tenant_limits() -> None:
    registry = ToolRegistry(BulkheadSettings(defaults=BulkheadLimits(max_concurrent_requests=4, queue_size=8)))
    registry.register(
        make_tool("search", bulkhead_config=BulkheadConfig(max_concurrent_requests=1, queue_size=0)),
        ScriptedHandler(),
    )

    bulkhead = registry.bulkhead_for("tenant-a")

    assert (bulkhead.max_concurrent_requests, bulkhead.queue_size) == (4, 8)
    assert "Informational only" in (ToolDefinition.model_fields["bulkhead_config"].description or "")


def test_error_rate_uses_monitoring_window() -> None:
    clock = FakeClock()
    registry = ToolRegistry(clock=clock)
    registry.register(
        make_tool("search", circuit_breaker_config=CircuitBreakerConfig(monitoring_window_seconds=30.0)),
        ScriptedHandler(),
    )

    registry.record_outcome("search", False)
    registry.record_outcome("search", True)
    assert registry.error_rate("search") == pytest.approx(0.5)

    clock.advance(31.0)
    registry.record_outcome("search", True)
    assert registry.error_rate("search") == pytest.approx(0.0)


def test_error_rate_for_unknown_tool_is_total() -> None:
    assert ToolRegistry().error_rate("missing") == 1.0


def test_record_probe_updates_runtime_state() -> None:
    registry = ToolRegistry()
    registry.register(make_tool("search"), ScriptedHandler())
    checked_at = datetime(2024, 1, 1, tzinfo=timezone.utc)

    registry.record_probe("search", healthy=False, checked_at=checked_at)

    state = registry.require("search")
    assert state.last_probe_healthy is False
    assert state.last_health_check == checked_at

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from coordinator.core.metrics import (
    increment_tool_fallback,
    observe_tool_invocation,
    record_bulkhead_occupancy,
    record_circuit_transition,
    record_health_probe,
    record_plan_outcome,
)


def test_observe_tool_invocation_tracks_outcome_and_latency() -> None:
    counter_labels = {"tool": "metrics-tool", "outcome": "success"}
    before = REGISTRY.get_sample_value("coordinator_tool_invocations_total", counter_labels) or 0.0
    latency_before = REGISTRY.get_sample_value("coordinator_tool_latency_seconds_sum", {"tool": "metrics-tool"}) or 0.0

    observe_tool_invocation(tool="metrics-tool", outcome="success", latency=0.25)

    assert REGISTRY.get_sample_value("coordinator_tool_invocations_total", counter_labels) == pytest.approx(before + 1)
    latency_after = REGISTRY.get_sample_value("coordinator_tool_latency_seconds_sum", {"tool": "metrics-tool"})
    assert latency_after == pytest.approx(latency_before + 0.25)


def test_circuit_transitions_are_counted_per_state() -> None:
    labels = {"key": "metrics-key", "state": "OPEN"}
    before = REGISTRY.get_sample_value("coordinator_circuit_transitions_total", labels) or 0.0

    record_circuit_transition(key="metrics-key", state="OPEN")

    assert REGISTRY.get_sample_value("coordinator_circuit_transitions_total", labels) == pytest.approx(before + 1)


def test_bulkhead_occupancy_gauges_follow_latest_value() -> None:
    record_bulkhead_occupancy(tenant="metrics-tenant", active=3, queued=2)
    record_bulkhead_occupancy(tenant="metrics-tenant", active=1, queued=0)

    assert REGISTRY.get_sample_value("coordinator_bulkhead_active_requests", {"tenant": "metrics-tenant"}) == 1.0
    assert REGISTRY.get_sample_value("coordinator_bulkhead_queued_requests", {"tenant": "metrics-tenant"}) == 0.0


def test_plan_outcome_records_mode_and_failed_steps() -> None:
    labels = {"mode": "parallel", "status": "failure"}
    before = REGISTRY.get_sample_value("coordinator_plan_runs_total", labels) or 0.0
    steps_before = REGISTRY.get_sample_value("coordinator_plan_failed_steps_sum", {"mode": "parallel"}) or 0.0

    record_plan_outcome(parallel=True, success=False, latency=1.5, failed_steps=2)

    assert REGISTRY.get_sample_value("coordinator_plan_runs_total", labels) == pytest.approx(before + 1)
    steps_after = REGISTRY.get_sample_value("coordinator_plan_failed_steps_sum", {"mode": "parallel"})
    assert steps_after == pytest.approx(steps_before + 2)


def test_fallback_and_probe_counters() -> None:
    fallback_before = REGISTRY.get_sample_value("coordinator_tool_fallback_total", {"tool": "metrics-tool"}) or 0.0
    probe_labels = {"tool": "metrics-tool", "outcome": "unhealthy"}
    probe_before = REGISTRY.get_sample_value("coordinator_health_probes_total", probe_labels) or 0.0

    increment_tool_fallback(tool="metrics-tool")
    record_health_probe(tool="metrics-tool", healthy=False)

    assert REGISTRY.get_sample_value("coordinator_tool_fallback_total", {"tool": "metrics-tool"}) == pytest.approx(
        fallback_before + 1
    )
    assert REGISTRY.get_sample_value("coordinator_health_probes_total", probe_labels) == pytest.approx(probe_before + 1)

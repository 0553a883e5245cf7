from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

TOOL_INVOCATIONS_TOTAL = Counter(
    "coordinator_tool_invocations_total",
    "Tool invocations grouped by outcome",
    labelnames=("tool", "outcome"),
)

TOOL_LATENCY_SECONDS = Histogram(
    "coordinator_tool_latency_seconds",
    "Latency for tool invocations, measured from admission to completion",
    labelnames=("tool",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, float("inf")),
)

TOOL_RETRIES_TOTAL = Counter(
    "coordinator_tool_retries_total",
    "Retry attempts issued for tool invocations",
    labelnames=("tool",),
)

TOOL_FALLBACK_TOTAL = Counter(
    "coordinator_tool_fallback_total",
    "Invocations answered by the degraded-mode fallback",
    labelnames=("tool",),
)

CIRCUIT_TRANSITIONS_TOTAL = Counter(
    "coordinator_circuit_transitions_total",
    "Circuit breaker state transitions",
    labelnames=("key", "state"),
)

BULKHEAD_REJECTIONS_TOTAL = Counter(
    "coordinator_bulkhead_rejections_total",
    "Requests rejected by a saturated tenant bulkhead",
    labelnames=("tenant",),
)

BULKHEAD_ACTIVE_GAUGE = Gauge(
    "coordinator_bulkhead_active_requests",
    "In-flight requests holding a bulkhead slot",
    labelnames=("tenant",),
)

BULKHEAD_QUEUED_GAUGE = Gauge(
    "coordinator_bulkhead_queued_requests",
    "Requests waiting in a tenant bulkhead queue",
    labelnames=("tenant",),
)

PLAN_RUNS_TOTAL = Counter(
    "coordinator_plan_runs_total",
    "Coordinated plan executions by mode and status",
    labelnames=("mode", "status"),
)

PLAN_LATENCY_SECONDS = Histogram(
    "coordinator_plan_latency_seconds",
    "End-to-end latency of coordinated plans",
    labelnames=("mode",),
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, float("inf")),
)

PLAN_FAILED_STEPS = Histogram(
    "coordinator_plan_failed_steps",
    "Number of failed steps per coordinated plan",
    labelnames=("mode",),
    buckets=(0, 1, 2, 3, 5, 8, 13),
)

HEALTH_PROBES_TOTAL = Counter(
    "coordinator_health_probes_total",
    "Background health probes grouped by outcome",
    labelnames=("tool", "outcome"),
)


def observe_tool_invocation(*, tool: str, outcome: str, latency: float) -> None:
    TOOL_INVOCATIONS_TOTAL.labels(tool=tool, outcome=outcome).inc()
    TOOL_LATENCY_SECONDS.labels(tool=tool).observe(max(0.0, latency))


def increment_tool_retry(*, tool: str) -> None:
    TOOL_RETRIES_TOTAL.labels(tool=tool).inc()


def increment_tool_fallback(*, tool: str) -> None:
    TOOL_FALLBACK_TOTAL.labels(tool=tool).inc()


def record_circuit_transition(*, key: str, state: str) -> None:
    CIRCUIT_TRANSITIONS_TOTAL.labels(key=key, state=state).inc()


def increment_bulkhead_rejection(*, tenant: str) -> None:
    BULKHEAD_REJECTIONS_TOTAL.labels(tenant=tenant).inc()


def record_bulkhead_occupancy(*, tenant: str, active: int, queued: int) -> None:
    BULKHEAD_ACTIVE_GAUGE.labels(tenant=tenant).set(active)
    BULKHEAD_QUEUED_GAUGE.labels(tenant=tenant).set(queued)


def record_plan_outcome(*, parallel: bool, success: bool, latency: float, failed_steps: int) -> None:
    mode = "parallel" if parallel else "sequential"
    PLAN_RUNS_TOTAL.labels(mode=mode, status="success" if success else "failure").inc()
    PLAN_LATENCY_SECONDS.labels(mode=mode).observe(max(0.0, latency))
    PLAN_FAILED_STEPS.labels(mode=mode).observe(max(0, failed_steps))


def record_health_probe(*, tool: str, healthy: bool) -> None:
    HEALTH_PROBES_TOTAL.labels(tool=tool, outcome="healthy" if healthy else "unhealthy").inc()

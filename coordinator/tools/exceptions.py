from __future__ import annotations


class ToolError(RuntimeError):
    """Base class for tool coordination failures."""

    kind: str = "ToolError"


class ToolNotFoundError(ToolError):
    """Raised when a requested tool id is not registered."""

    kind = "ToolNotFound"


class BulkheadSaturatedError(ToolError):
    """Raised when a tenant bulkhead cannot admit another request."""

    kind = "BulkheadSaturated"


class RemoteCallFailedError(ToolError):
    """Raised when the tool itself fails; counted against the circuit breaker."""

    kind = "RemoteCallFailed"


class ToolTimeoutError(RemoteCallFailedError):
    """Raised when a tool call exceeds its invocation timeout."""


class PlanError(ToolError):
    """Base class for plan-level failures."""

    kind = "PlanError"


class DependenciesNotMetError(PlanError):
    """Raised when a step's dependencies did not all complete."""

    kind = "DependenciesNotMet"


class PlanAbortedError(PlanError):
    """Raised for steps skipped after a critical step failed."""

    kind = "Aborted"


class CyclicPlanError(PlanError):
    """Raised when a sequential plan's dependency graph contains a cycle."""

    kind = "CyclicPlan"

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Execution plan contains a dependency cycle: {' -> '.join(self.cycle)}")

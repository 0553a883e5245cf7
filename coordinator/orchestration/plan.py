from __future__ import annotations

from typing import Any, Sequence
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from ..tools.exceptions import CyclicPlanError
from ..tools.models import RetryConfig, ToolResult


class PlanStep(BaseModel):
    """A single tool invocation inside an execution plan."""

    id: str
    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    dependencies: set[str] = Field(default_factory=set)
    timeout_seconds: float | None = Field(None, gt=0.0)
    retry_config: RetryConfig | None = None
    critical: bool | None = Field(
        None,
        description="Abort a sequential plan when this step fails. Defaults to priority == 1 when unset.",
    )

    @property
    def is_critical(self) -> bool:
        if self.critical is not None:
            return self.critical
        return self.priority == 1


class ExecutionPlan(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    steps: list[PlanStep] = Field(default_factory=list)
    parallelizable: bool = False
    fallback_plan: ExecutionPlan | None = None

    @model_validator(mode="after")
    def _check_unique_step_ids(self) -> "ExecutionPlan":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id in execution plan: {step.id}")
            seen.add(step.id)
        return self


class CoordinatedPlanResult(BaseModel):
    plan_id: str
    results: list[ToolResult] = Field(default_factory=list)
    success: bool
    total_latency_ms: float
    failed_steps: list[str] = Field(default_factory=list)
    fallback_result: CoordinatedPlanResult | None = None


ExecutionPlan.model_rebuild()
CoordinatedPlanResult.model_rebuild()


_UNVISITED, _VISITING, _DONE = 0, 1, 2


def topological_sort(steps: Sequence[PlanStep]) -> list[PlanStep]:
    """Order steps so that every step follows the steps it depends on.

    Independent steps keep their input order. Dependencies on ids that are not
    part of the plan are ignored here and fail the step at run time. Raises
    ``CyclicPlanError`` when the graph is not a DAG.
    """
    by_id = {step.id: step for step in steps}
    positions = {step_id: index for index, step_id in enumerate(by_id)}
    marks: dict[str, int] = {step_id: _UNVISITED for step_id in by_id}
    ordered: list[PlanStep] = []

    for root in steps:
        if marks[root.id] != _UNVISITED:
            continue
        # Iterative DFS so deep chains do not hit the recursion limit.
        path: list[str] = [root.id]
        stack: list[tuple[str, list[str]]] = [(root.id, _sorted_dependencies(by_id[root.id], positions))]
        marks[root.id] = _VISITING
        while stack:
            step_id, pending = stack[-1]
            if pending:
                dep = pending.pop(0)
                if marks[dep] == _DONE:
                    continue
                if marks[dep] == _VISITING:
                    raise CyclicPlanError(path[path.index(dep):] + [dep])
                marks[dep] = _VISITING
                path.append(dep)
                stack.append((dep, _sorted_dependencies(by_id[dep], positions)))
                continue
            stack.pop()
            path.pop()
            marks[step_id] = _DONE
            ordered.append(by_id[step_id])
    return ordered


def _sorted_dependencies(step: PlanStep, positions: dict[str, int]) -> list[str]:
    # Plan order keeps the traversal deterministic for set-typed dependencies.
    known = [dep for dep in step.dependencies if dep in positions]
    return sorted(known, key=positions.__getitem__)


__all__ = ["CoordinatedPlanResult", "ExecutionPlan", "PlanStep", "topological_sort"]

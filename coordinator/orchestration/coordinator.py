"""
Plan coordination.

Runs every step of an ``ExecutionPlan`` through the invocation executor,
either all at once (parallelizable plans) or one by one in dependency order,
and folds the per-step results into a single ``CoordinatedPlanResult``.

Partial failures never raise: each requested step is reported with exactly one
``ToolResult``. The only error surfaced to the caller is ``CyclicPlanError``,
raised before any step runs. There is no plan-level timeout; callers that need
one wrap ``execute`` themselves.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Sequence
from uuid import uuid4

from ..core import metrics
from ..core.audit import AuditEvent, AuditSink, emit_safely
from ..core.logging import get_logger
from ..tools.exceptions import DependenciesNotMetError, PlanAbortedError, PlanError
from ..tools.executor import InvocationExecutor
from ..tools.models import ToolInvocation, ToolResult
from .plan import CoordinatedPlanResult, ExecutionPlan, PlanStep, topological_sort

logger = get_logger(name=__name__)


class PlanCoordinator:
    def __init__(
        self,
        executor: InvocationExecutor,
        *,
        sink: AuditSink | None = None,
        prometheus_enabled: bool = True,
    ) -> None:
        self._executor = executor
        self._sink = sink
        self._prometheus_enabled = prometheus_enabled

    async def execute(
        self,
        plan: ExecutionPlan,
        tenant_id: str,
        user_id: str | None = None,
    ) -> CoordinatedPlanResult:
        chain = self._validate(plan)
        return await self._execute(plan, chain, tenant_id, user_id)

    def _validate(self, plan: ExecutionPlan) -> list[list[PlanStep]]:
        """Order every plan in the fallback chain up front so cycles fail before any step runs.

        Entry ``i`` holds the run order of the plan ``i`` levels down the chain;
        plan ids are not assumed to be unique.
        """
        chain: list[list[PlanStep]] = []
        current: ExecutionPlan | None = plan
        while current is not None:
            chain.append(list(current.steps) if current.parallelizable else topological_sort(current.steps))
            current = current.fallback_plan
        return chain

    async def _execute(
        self,
        plan: ExecutionPlan,
        chain: list[list[PlanStep]],
        tenant_id: str,
        user_id: str | None,
    ) -> CoordinatedPlanResult:
        start = time.perf_counter()
        log = logger.bind(plan=plan.id, tenant=tenant_id, parallel=plan.parallelizable)
        log.info("plan_started", steps=len(plan.steps))

        if plan.parallelizable:
            results, failed_steps = await self._run_parallel(chain[0], tenant_id, user_id)
        else:
            results, failed_steps = await self._run_sequential(chain[0], tenant_id, user_id)

        total_latency_ms = (time.perf_counter() - start) * 1000
        success = not failed_steps
        outcome = CoordinatedPlanResult(
            plan_id=plan.id,
            results=results,
            success=success,
            total_latency_ms=total_latency_ms,
            failed_steps=failed_steps,
        )
        self._record(plan, tenant_id, outcome)
        log.info(
            "plan_completed",
            success=success,
            failed_steps=failed_steps,
            latency_ms=round(total_latency_ms, 3),
        )

        if not success and plan.fallback_plan is not None:
            log.warning("plan_fallback_started", fallback_plan=plan.fallback_plan.id)
            outcome.fallback_result = await self._execute(plan.fallback_plan, chain[1:], tenant_id, user_id)
        return outcome

    async def _run_parallel(
        self,
        steps: Sequence[PlanStep],
        tenant_id: str,
        user_id: str | None,
    ) -> tuple[list[ToolResult], list[str]]:
        invocations = [self._invocation(step, tenant_id, user_id) for step in steps]
        settled = await asyncio.gather(
            *(self._executor.invoke(invocation) for invocation in invocations),
            return_exceptions=True,
        )

        results: list[ToolResult] = []
        failed_steps: list[str] = []
        for step, invocation, outcome in zip(steps, invocations, settled):
            if isinstance(outcome, BaseException):
                logger.error("plan_step_crashed", step=step.id, tool=step.tool, error=repr(outcome))
                outcome = ToolResult(
                    invocation_id=invocation.id,
                    tool_id=invocation.tool_id,
                    success=False,
                    error=str(outcome) or type(outcome).__name__,
                    error_kind="InternalError",
                )
            results.append(outcome)
            if not outcome.success:
                failed_steps.append(step.id)
        return results, failed_steps

    async def _run_sequential(
        self,
        ordered: Sequence[PlanStep],
        tenant_id: str,
        user_id: str | None,
    ) -> tuple[list[ToolResult], list[str]]:
        results: list[ToolResult] = []
        failed_steps: list[str] = []
        completed: set[str] = set()

        for index, step in enumerate(ordered):
            if not step.dependencies <= completed:
                missing = sorted(step.dependencies - completed)
                logger.info("plan_step_skipped", step=step.id, tool=step.tool, missing=missing)
                results.append(self._skipped(step, tenant_id, DependenciesNotMetError("Dependencies not met")))
                failed_steps.append(step.id)
                continue

            result = await self._executor.invoke(self._invocation(step, tenant_id, user_id))
            results.append(result)
            if result.success:
                completed.add(step.id)
                continue

            failed_steps.append(step.id)
            if step.is_critical:
                remaining = ordered[index + 1 :]
                logger.warning(
                    "critical_step_failed",
                    step=step.id,
                    tool=step.tool,
                    aborted=[pending.id for pending in remaining],
                )
                reason = PlanAbortedError(f"Aborted after critical step '{step.id}' failed")
                for pending in remaining:
                    results.append(self._skipped(pending, tenant_id, reason))
                    failed_steps.append(pending.id)
                break
        return results, failed_steps

    @staticmethod
    def _invocation(step: PlanStep, tenant_id: str, user_id: str | None) -> ToolInvocation:
        parameters: dict[str, Any] = {**step.parameters, "tenant_id": tenant_id, "user_id": user_id}
        return ToolInvocation(
            tool_id=step.tool,
            parameters=parameters,
            timeout_seconds=step.timeout_seconds,
            retry_config=step.retry_config,
            tenant_id=tenant_id,
            priority=step.priority,
        )

    def _skipped(self, step: PlanStep, tenant_id: str, reason: PlanError) -> ToolResult:
        result = ToolResult(
            invocation_id=str(uuid4()),
            tool_id=step.tool,
            success=False,
            error=str(reason),
            error_kind=reason.kind,
        )
        emit_safely(
            self._sink,
            AuditEvent(
                kind="tool",
                tool_id=step.tool,
                tenant_id=tenant_id,
                success=False,
                latency_ms=0.0,
                error_kind=reason.kind,
                timestamp=result.timestamp,
            ),
        )
        return result

    def _record(self, plan: ExecutionPlan, tenant_id: str, outcome: CoordinatedPlanResult) -> None:
        if self._prometheus_enabled:
            metrics.record_plan_outcome(
                parallel=plan.parallelizable,
                success=outcome.success,
                latency=outcome.total_latency_ms / 1000.0,
                failed_steps=len(outcome.failed_steps),
            )
        emit_safely(
            self._sink,
            AuditEvent(
                kind="plan",
                plan_id=plan.id,
                tenant_id=tenant_id,
                success=outcome.success,
                latency_ms=outcome.total_latency_ms,
                retry_count=sum(result.retry_count for result in outcome.results),
            ),
        )


__all__ = ["PlanCoordinator"]

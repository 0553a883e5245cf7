from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core import metrics
from ..core.audit import AuditEvent, AuditSink, emit_safely
from ..core.logging import get_logger
from .circuit_breaker import operation_key
from .exceptions import BulkheadSaturatedError, RemoteCallFailedError, ToolError, ToolNotFoundError, ToolTimeoutError
from .models import RetryConfig, ToolInvocation, ToolResult
from .registry import ToolRegistry, ToolRuntimeState

__all__ = ["InvocationExecutor", "build_fallback_payload"]

logger = get_logger(name=__name__)


def build_fallback_payload(tool_id: str) -> Dict[str, Any]:
    return {
        "fallback": True,
        "tool_id": tool_id,
        "message": f"Service temporarily unavailable: {tool_id}",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class InvocationExecutor:
    """Run one tool invocation through admission, the breaker, retries, and a fallback.

    Every outcome is captured on the returned ``ToolResult``; nothing but task
    cancellation escapes ``invoke``.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        sink: AuditSink | None = None,
        isolate_tenants: bool = False,
    ) -> None:
        self._registry = registry
        self._sink = sink
        self._isolate_tenants = isolate_tenants

    async def invoke(self, invocation: ToolInvocation) -> ToolResult:
        start = time.perf_counter()
        try:
            state = self._registry.require(invocation.tool_id)
        except ToolNotFoundError as exc:
            return self._finish(invocation, start, error=exc)

        definition = state.definition
        timeout = invocation.timeout_seconds or definition.timeout_seconds
        bulkhead = self._registry.bulkhead_for(invocation.tenant_id)
        try:
            await asyncio.wait_for(bulkhead.admit(), timeout=timeout)
        except BulkheadSaturatedError as exc:
            return self._finish(invocation, start, error=exc)
        except asyncio.TimeoutError:
            error = BulkheadSaturatedError(
                f"Timed out after {timeout:.2f}s waiting for a bulkhead slot (tenant '{invocation.tenant_id}')"
            )
            return self._finish(invocation, start, error=error)

        # Latency covers the tool call only, not lookup or queue wait.
        admitted = time.perf_counter()
        success = False
        attempts = [0]
        try:
            payload, degraded = await self._call(state, invocation, timeout, attempts)
            success = True
        except Exception as exc:
            result = self._finish(
                invocation,
                admitted,
                error=exc,
                retry_count=max(0, attempts[0] - 1),
                passed_admission=True,
            )
        else:
            result = self._finish(
                invocation,
                admitted,
                payload=payload,
                retry_count=max(0, attempts[0] - 1),
                degraded=degraded,
                passed_admission=True,
            )
        finally:
            bulkhead.release_slot(success, latency_ms=(time.perf_counter() - admitted) * 1000)
        return result

    async def _call(
        self,
        state: ToolRuntimeState,
        invocation: ToolInvocation,
        timeout: float,
        attempts: list[int],
    ) -> tuple[Any, bool]:
        definition = state.definition
        tool_id = definition.id
        breaker = self._registry.breaker_for(tool_id)
        key = operation_key(tool_id, invocation.tenant_id, isolate_tenants=self._isolate_tenants)
        retry_config = invocation.retry_config or definition.retry_config
        parameters = dict(invocation.parameters)
        fallback_used = False

        async def execute() -> Any:
            try:
                return await asyncio.wait_for(
                    state.handler(parameters, timeout_seconds=timeout),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as exc:
                raise ToolTimeoutError(f"Tool '{tool_id}' timed out after {timeout:.2f}s") from exc
            except RemoteCallFailedError:
                raise
            except Exception as exc:
                raise RemoteCallFailedError(f"Tool '{tool_id}' failed: {exc}") from exc

        async def fallback() -> Any:
            nonlocal fallback_used
            fallback_used = True
            metrics.increment_tool_fallback(tool=tool_id)
            logger.warning("tool_fallback_used", tool=tool_id, tenant=invocation.tenant_id, key=key)
            return build_fallback_payload(tool_id)

        result: Any = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retry_config.max_retries + 1),
            wait=self._wait_strategy(retry_config),
            retry=retry_if_exception_type(RemoteCallFailedError),
            before_sleep=self._before_retry(tool_id, invocation.tenant_id),
            reraise=True,
        ):
            with attempt:
                attempts[0] = attempt.retry_state.attempt_number
                result = await breaker.call_with_breaker(
                    key,
                    execute,
                    fallback,
                    definition.circuit_breaker_config,
                )
        return result, fallback_used

    @staticmethod
    def _wait_strategy(retry_config: RetryConfig) -> wait_exponential:
        return wait_exponential(
            multiplier=retry_config.backoff_seconds,
            exp_base=retry_config.backoff_multiplier,
            min=0,
        )

    @staticmethod
    def _before_retry(tool_id: str, tenant_id: str):
        def _log(retry_state: RetryCallState) -> None:
            metrics.increment_tool_retry(tool=tool_id)
            outcome = retry_state.outcome
            error = outcome.exception() if outcome is not None else None
            logger.info(
                "tool_retry_scheduled",
                tool=tool_id,
                tenant=tenant_id,
                attempt=retry_state.attempt_number,
                error=str(error) if error else None,
            )

        return _log

    def _finish(
        self,
        invocation: ToolInvocation,
        start: float,
        *,
        payload: Any = None,
        error: BaseException | None = None,
        retry_count: int = 0,
        degraded: bool = False,
        passed_admission: bool = False,
    ) -> ToolResult:
        latency_ms = (time.perf_counter() - start) * 1000
        error_kind = None
        if error is not None:
            error_kind = error.kind if isinstance(error, ToolError) else "InternalError"
            if isinstance(error, ToolError) and not isinstance(error, RemoteCallFailedError):
                logger.info(
                    "tool_invocation_rejected",
                    tool=invocation.tool_id,
                    tenant=invocation.tenant_id,
                    error_kind=error_kind,
                    error=str(error),
                )
            else:
                logger.warning(
                    "tool_invocation_failed",
                    tool=invocation.tool_id,
                    tenant=invocation.tenant_id,
                    error_kind=error_kind,
                    error=str(error),
                )
        if passed_admission:
            self._registry.record_outcome(invocation.tool_id, error is None and not degraded)

        result = ToolResult(
            invocation_id=invocation.id,
            tool_id=invocation.tool_id,
            success=error is None,
            result=payload if error is None else None,
            error=str(error) if error is not None else None,
            error_kind=error_kind,
            latency_ms=latency_ms,
            retry_count=retry_count,
            degraded=degraded,
        )
        emit_safely(
            self._sink,
            AuditEvent(
                kind="tool",
                tool_id=result.tool_id,
                tenant_id=invocation.tenant_id,
                success=result.success,
                latency_ms=result.latency_ms,
                retry_count=result.retry_count,
                error_kind=result.error_kind,
                degraded=result.degraded,
                timestamp=result.timestamp,
            ),
        )
        return result

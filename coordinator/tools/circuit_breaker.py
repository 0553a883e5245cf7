"""
Keyed circuit breaker.

One ``CircuitBreaker`` tracks any number of operation keys. Each key moves
through CLOSED -> OPEN -> HALF_OPEN -> CLOSED independently. The breaker only
decides reachability: it never retries, and a fallback failure propagates to
the caller unchanged.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from ..core import metrics
from ..core.logging import get_logger
from .models import CircuitBreakerConfig, CircuitBreakerStats, CircuitState

logger = get_logger(name=__name__)

T = TypeVar("T")

_PASS = "pass"
_PROBE = "probe"
_REJECT = "reject"


def operation_key(tool_id: str, tenant_id: str | None = None, *, isolate_tenants: bool = False) -> str:
    """Return the breaker key for a tool call.

    The key depends only on the tool id (and the tenant when isolation is
    enabled) so repeated calls to the same logical operation always accumulate
    against the same record.
    """
    if isolate_tenants and tenant_id:
        return f"{tool_id}:{tenant_id}"
    return tool_id


@dataclass(slots=True)
class CircuitBreakerRecord:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float | None = None
    probe_in_flight: bool = False


class CircuitBreaker:
    """Per-key failure tracking with fallback short-circuiting."""

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._records: dict[str, CircuitBreakerRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock or time.monotonic

    async def call_with_breaker(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]],
        config: CircuitBreakerConfig,
    ) -> T:
        decision = self._admit(key, config)
        if decision == _REJECT:
            return await fallback()

        probe = decision == _PROBE
        try:
            result = await operation()
        except asyncio.CancelledError:
            if probe:
                self._release_probe(key)
            raise
        except Exception:
            if self._on_failure(key, config, probe=probe):
                return await fallback()
            raise
        self._on_success(key, probe=probe)
        return result

    def get_stats(self, key: str) -> CircuitBreakerStats:
        with self._lock:
            record = self._records.get(key) or CircuitBreakerRecord()
            return CircuitBreakerStats(
                key=key,
                state=record.state,
                failure_count=record.failure_count,
                success_count=record.success_count,
                last_failure_time=record.last_failure_time,
            )

    def state(self, key: str) -> CircuitState:
        with self._lock:
            record = self._records.get(key)
            return record.state if record else CircuitState.CLOSED

    def reset(self, key: str) -> None:
        with self._lock:
            previous = self._records.get(key)
            self._records[key] = CircuitBreakerRecord()
        if previous is not None and previous.state is not CircuitState.CLOSED:
            self._log_transition(key, CircuitState.CLOSED, reason="reset")

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._records)

    def _admit(self, key: str, config: CircuitBreakerConfig) -> str:
        with self._lock:
            record = self._records.setdefault(key, CircuitBreakerRecord())
            if record.state is CircuitState.CLOSED:
                return _PASS
            if record.state is CircuitState.OPEN:
                last_failure = record.last_failure_time or 0.0
                if self._clock() - last_failure < config.reset_timeout_seconds:
                    return _REJECT
                record.state = CircuitState.HALF_OPEN
                record.probe_in_flight = True
                self._log_transition(key, CircuitState.HALF_OPEN, reason="reset_timeout_elapsed")
                return _PROBE
            if record.probe_in_flight:
                return _REJECT
            record.probe_in_flight = True
            return _PROBE

    def _on_success(self, key: str, *, probe: bool) -> None:
        with self._lock:
            record = self._records.setdefault(key, CircuitBreakerRecord())
            record.failure_count = 0
            record.success_count += 1
            if probe:
                record.probe_in_flight = False
                record.state = CircuitState.CLOSED
                self._log_transition(key, CircuitState.CLOSED, reason="probe_succeeded")

    def _on_failure(self, key: str, config: CircuitBreakerConfig, *, probe: bool) -> bool:
        """Record a failure and return True when the circuit is open afterwards."""
        with self._lock:
            record = self._records.setdefault(key, CircuitBreakerRecord())
            record.failure_count += 1
            record.last_failure_time = self._clock()
            if probe:
                record.probe_in_flight = False
                record.state = CircuitState.OPEN
                self._log_transition(key, CircuitState.OPEN, reason="probe_failed")
            elif record.state is CircuitState.CLOSED and record.failure_count >= config.failure_threshold:
                record.state = CircuitState.OPEN
                self._log_transition(
                    key,
                    CircuitState.OPEN,
                    reason="failure_threshold_reached",
                    failures=record.failure_count,
                )
            return record.state is CircuitState.OPEN

    def _release_probe(self, key: str) -> None:
        with self._lock:
            record = self._records.get(key)
            if record is not None:
                record.probe_in_flight = False

    def _log_transition(self, key: str, state: CircuitState, **fields: object) -> None:
        metrics.record_circuit_transition(key=key, state=state.value)
        logger.info("circuit_state_changed", key=key, state=state.value, **fields)


__all__ = ["CircuitBreaker", "CircuitBreakerRecord", "operation_key"]

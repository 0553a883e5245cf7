from __future__ import annotations

import asyncio
import threading
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Deque

from ..core import metrics
from ..core.logging import get_logger
from .exceptions import BulkheadSaturatedError
from .models import BulkheadStats

logger = get_logger(name=__name__)


class SlotKind(str, Enum):
    ACTIVE = "active"
    QUEUED = "queued"


class TenantBulkhead:
    """Concurrency and queue admission control for a single tenant.

    A request either takes one of ``max_concurrent_requests`` active slots or
    one of ``queue_size`` queue positions. When both are full the request is
    rejected. Releasing a slot hands it to the oldest queued waiter, so the
    queued counter drains before the active one.
    """

    def __init__(
        self,
        tenant_id: str,
        *,
        max_concurrent_requests: int,
        queue_size: int,
        latency_window: int = 100,
    ) -> None:
        self.tenant_id = tenant_id
        self.max_concurrent_requests = max(1, int(max_concurrent_requests))
        self.queue_size = max(0, int(queue_size))
        self._active = 0
        self._queued = 0
        self._total = 0
        self._failed = 0
        self._rejected = 0
        self._latencies: Deque[float] = deque(maxlen=max(1, latency_window))
        self._last_activity = datetime.now(timezone.utc)
        self._waiters: Deque[asyncio.Future[None]] = deque()
        self._lock = threading.Lock()

    def can_accept_request(self) -> bool:
        with self._lock:
            return self._can_accept_locked()

    def acquire_slot(self) -> SlotKind:
        with self._lock:
            return self._acquire_locked()

    async def admit(self) -> SlotKind:
        """Reserve a slot, waiting in FIFO order when only a queue position is free."""
        with self._lock:
            kind = self._acquire_locked()
            if kind is SlotKind.ACTIVE:
                return kind
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)

        try:
            await waiter
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise
        return kind

    def release_slot(self, success: bool, *, latency_ms: float | None = None) -> None:
        with self._lock:
            if not success:
                self._failed += 1
            if latency_ms is not None:
                self._latencies.append(max(0.0, float(latency_ms)))
            self._release_locked()

    def get_stats(self) -> BulkheadStats:
        with self._lock:
            avg_latency = sum(self._latencies) / len(self._latencies) if self._latencies else 0.0
            return BulkheadStats(
                tenant_id=self.tenant_id,
                active_requests=self._active,
                queued_requests=self._queued,
                total_requests=self._total,
                failed_requests=self._failed,
                rejected_requests=self._rejected,
                avg_latency_ms=avg_latency,
                last_activity=self._last_activity,
            )

    def _can_accept_locked(self) -> bool:
        return self._active < self.max_concurrent_requests or self._queued < self.queue_size

    def _acquire_locked(self) -> SlotKind:
        if not self._can_accept_locked():
            self._rejected += 1
            metrics.increment_bulkhead_rejection(tenant=self.tenant_id)
            logger.warning(
                "bulkhead_saturated",
                tenant=self.tenant_id,
                active=self._active,
                queued=self._queued,
            )
            raise BulkheadSaturatedError(f"Bulkhead capacity exceeded for tenant '{self.tenant_id}'")
        if self._active < self.max_concurrent_requests:
            self._active += 1
            kind = SlotKind.ACTIVE
        else:
            self._queued += 1
            kind = SlotKind.QUEUED
        self._total += 1
        self._touch()
        return kind

    def _release_locked(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            self._queued -= 1
            if waiter.done():
                continue
            # The released active slot passes to the oldest queued request.
            waiter.set_result(None)
            self._touch()
            return
        if self._queued > 0:
            self._queued -= 1
        elif self._active > 0:
            self._active -= 1
        self._touch()

    def _abandon(self, waiter: asyncio.Future[None]) -> None:
        with self._lock:
            self._failed += 1
            if waiter in self._waiters:
                self._waiters.remove(waiter)
                self._queued -= 1
                self._touch()
            elif waiter.done() and not waiter.cancelled():
                # Promoted just before cancellation; give the slot back.
                self._release_locked()

    def _touch(self) -> None:
        self._last_activity = datetime.now(timezone.utc)
        metrics.record_bulkhead_occupancy(tenant=self.tenant_id, active=self._active, queued=self._queued)


__all__ = ["SlotKind", "TenantBulkhead"]

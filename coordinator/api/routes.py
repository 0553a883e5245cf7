from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..core.logging import get_logger
from ..services.coordination import ToolCoordinationService
from ..tools.models import BulkheadStats, SystemHealth, ToolHealth
from .dependencies import get_coordination_service

logger = get_logger(name=__name__)

router = APIRouter()


@router.get("/health", response_model=SystemHealth, tags=["health"])
async def system_health(service: ToolCoordinationService = Depends(get_coordination_service)) -> SystemHealth:
    return service.get_system_health()


@router.get("/tools/{tool_id}/health", response_model=ToolHealth, tags=["health"])
async def tool_health(
    tool_id: str,
    service: ToolCoordinationService = Depends(get_coordination_service),
) -> ToolHealth:
    # Unknown tools report unhealthy rather than 404, matching the service contract.
    return service.get_tool_health(tool_id)


@router.get("/tenants/{tenant_id}/bulkhead", response_model=BulkheadStats, tags=["bulkhead"])
async def tenant_bulkhead(
    tenant_id: str,
    service: ToolCoordinationService = Depends(get_coordination_service),
) -> BulkheadStats:
    if service.registry.existing_bulkhead(tenant_id) is None:
        logger.info("bulkhead_stats_missing", tenant=tenant_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No bulkhead has been created for tenant '{tenant_id}'",
        )
    return service.get_bulkhead_stats(tenant_id)

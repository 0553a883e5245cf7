from __future__ import annotations

from fastapi import Request

from ..services.coordination import ToolCoordinationService


def get_coordination_service(request: Request) -> ToolCoordinationService:
    return request.app.state.coordination_service

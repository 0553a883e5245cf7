from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from .api.routes import router as api_router
from .core.config import Settings, get_settings
from .core.logging import configure_logging, get_logger
from .services.coordination import ToolCoordinationService, create_tool_coordination_service

logger = get_logger(name=__name__)


def create_app(
    service: ToolCoordinationService | None = None,
    *,
    settings: Settings | None = None,
) -> FastAPI:
    settings = settings or (service.settings if service is not None else get_settings())
    configure_logging(settings.observability.log_level, json_output=settings.observability.json_logs)
    service = service or create_tool_coordination_service(settings)

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.shutdown()

    app = FastAPI(title="Tool Coordinator", version="0.1.0", lifespan=app_lifespan)
    app.state.coordination_service = service
    app.include_router(api_router)

    if settings.observability.prometheus_enabled:

        @app.get("/metrics", tags=["observability"])
        async def metrics() -> Response:
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    logger.info("app_created", environment=settings.environment, tools=service.registry.list())
    return app

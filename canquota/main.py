from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes.admin import router as admin_router
from .api.routes.health import router as health_router
from .api.routes.rate_limit import router as rate_limit_router
from .core.config import Settings, get_settings
from .core.errors import InvalidRequest, QuotaServiceError
from .core.logging import configure_logging
from .db import dispose_engine, get_engine, init_db
from .telemetry import configure_tracing, setup_prometheus

logger = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    explicit = settings is not None
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.project_name, version="0.1.0")
    if explicit:
        app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=settings.cors_allow_headers,
    )

    @app.on_event("startup")
    async def _startup() -> None:
        if not settings.database_url:
            return
        engine = get_engine(settings.database_url)
        if settings.auto_create_schema:
            await init_db(engine)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await dispose_engine()

    @app.exception_handler(QuotaServiceError)
    async def _quota_service_error(request: Request, exc: QuotaServiceError) -> JSONResponse:
        if isinstance(exc, InvalidRequest):
            logger.info("request.rejected", path=request.url.path, reason=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("request.malformed", path=request.url.path, errors=len(exc.errors()))
        return JSONResponse(status_code=400, content={"error": "Invalid request"})

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("request.unhandled_error", path=request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/healthz")
    def healthz() -> dict[str, str | bool]:
        return {"ok": True, "service": "canquota"}

    app.include_router(rate_limit_router, prefix=settings.api_v1_prefix)
    app.include_router(admin_router, prefix=settings.api_v1_prefix)
    app.include_router(health_router, prefix=settings.api_v1_prefix)

    if settings.enable_prometheus_metrics:
        setup_prometheus(app, settings)
    configure_tracing(app, settings)

    return app


app = create_app()

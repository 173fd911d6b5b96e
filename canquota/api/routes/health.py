from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ...core.config import Settings, get_settings
from ...repositories.usage import UsageRepository
from ...services.deployment import DeploymentReport, run_deployment_checks
from ..dependencies import get_usage_repository

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/deployment", response_model=DeploymentReport)
async def deployment_status(
    usage: UsageRepository = Depends(get_usage_repository),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    report = await run_deployment_checks(usage, settings)
    return JSONResponse(
        status_code=200 if report.ok else 503,
        content=report.model_dump(mode="json"),
    )

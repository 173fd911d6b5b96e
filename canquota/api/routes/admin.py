from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from ...core.config import Settings, get_settings
from ...core.timeutil import to_naive_utc, utc_now
from ...domain.attempts import AttemptLogListResponse, RetentionReport, UsageAnalytics
from ...domain.pagination import PaginationMeta, PaginationParams
from ...repositories.attempts import AttemptLogRepository
from ...repositories.usage import UsageRepository
from ...services.retention import run_retention_sweep
from ..dependencies import (
    get_attempt_log_repository,
    get_pagination_params,
    get_usage_repository,
    require_admin,
)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


@router.get("/analytics", response_model=UsageAnalytics)
async def usage_analytics(
    days: int = Query(default=7, ge=1, le=365),
    attempts: AttemptLogRepository = Depends(get_attempt_log_repository),
) -> UsageAnalytics:
    since = to_naive_utc(utc_now()) - timedelta(days=days)
    logs = await attempts.list_since(since=since)
    return UsageAnalytics.from_logs(logs, days=days)


@router.get("/attempts", response_model=AttemptLogListResponse)
async def list_attempts(
    days: int | None = Query(default=None, ge=1, le=365),
    attempts: AttemptLogRepository = Depends(get_attempt_log_repository),
    pagination: PaginationParams = Depends(get_pagination_params),
) -> AttemptLogListResponse:
    since = to_naive_utc(utc_now()) - timedelta(days=days) if days else None
    logs, total = await attempts.list_recent(
        since=since,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    meta = PaginationMeta.for_page(pagination, count=len(logs), total=total)
    return AttemptLogListResponse(data=logs, count=meta.count, pagination=meta)


@router.post("/retention/sweep", response_model=RetentionReport)
async def retention_sweep(
    usage: UsageRepository = Depends(get_usage_repository),
    attempts: AttemptLogRepository = Depends(get_attempt_log_repository),
    settings: Settings = Depends(get_settings),
) -> RetentionReport:
    return await run_retention_sweep(usage, attempts, settings)

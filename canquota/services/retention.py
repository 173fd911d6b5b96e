from __future__ import annotations

from datetime import timedelta

import structlog

from ..core.config import Settings
from ..core.timeutil import Clock, to_naive_utc, utc_now, utc_today
from ..domain.attempts import RetentionReport
from ..repositories.attempts import AttemptLogRepository
from ..repositories.usage import UsageRepository

logger = structlog.get_logger(__name__)


async def run_retention_sweep(
    usage: UsageRepository,
    attempts: AttemptLogRepository,
    settings: Settings,
    clock: Clock | None = None,
) -> RetentionReport:
    """Drop anonymous usage rows and anonymous attempt logs past their windows.

    Authenticated users' counters and attempt logs are kept.
    """

    now = (clock or utc_now)()
    usage_cutoff = utc_today(now) - timedelta(days=settings.anonymous_usage_retention_days)
    log_cutoff = to_naive_utc(now) - timedelta(days=settings.attempt_log_retention_days)

    usage_deleted = await usage.purge_anonymous_before(cutoff=usage_cutoff)
    logs_deleted = await attempts.purge_anonymous_before(cutoff=log_cutoff)
    logger.info(
        "retention.sweep.completed",
        anonymous_usage_deleted=usage_deleted,
        attempt_logs_deleted=logs_deleted,
        usage_cutoff=usage_cutoff.isoformat(),
        log_cutoff=log_cutoff.isoformat(),
    )
    return RetentionReport(
        anonymous_usage_deleted=usage_deleted,
        attempt_logs_deleted=logs_deleted,
    )

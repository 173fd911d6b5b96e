"""Deployment readiness checks surfaced by the health routes."""

from __future__ import annotations

from enum import Enum

import structlog
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from ..core.config import Settings
from ..repositories.usage import UsageRepository

logger = structlog.get_logger(__name__)


class CheckStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class DeploymentCheck(BaseModel):
    name: str
    status: CheckStatus
    message: str


class DeploymentReport(BaseModel):
    ok: bool
    checks: list[DeploymentCheck]


async def run_deployment_checks(usage: UsageRepository, settings: Settings) -> DeploymentReport:
    checks = [
        await _check_database(usage),
        _check_rate_limiter(settings),
        _check_environment(settings),
    ]
    ok = all(check.status != CheckStatus.ERROR for check in checks)
    return DeploymentReport(ok=ok, checks=checks)


async def _check_database(usage: UsageRepository) -> DeploymentCheck:
    name = "Database Tables"
    try:
        await usage.ping()
    except SQLAlchemyError as exc:
        logger.warning("deployment.database_unreachable", error=type(exc).__name__)
        return DeploymentCheck(
            name=name,
            status=CheckStatus.ERROR,
            message="Usage tables not reachable. Run `canquota-manage init-db` or the migrations",
        )
    return DeploymentCheck(name=name, status=CheckStatus.SUCCESS, message="All tables exist")


def _check_rate_limiter(settings: Settings) -> DeploymentCheck:
    name = "Rate Limiter"
    if not settings.jwt_secret:
        return DeploymentCheck(
            name=name,
            status=CheckStatus.WARNING,
            message="No credential secret configured; every caller is treated as anonymous",
        )
    return DeploymentCheck(name=name, status=CheckStatus.SUCCESS, message="Rate limiting active")


def _check_environment(settings: Settings) -> DeploymentCheck:
    name = "Environment Variables"
    if not settings.admin_emails:
        return DeploymentCheck(
            name=name,
            status=CheckStatus.WARNING,
            message="CANQUOTA_ADMIN_EMAILS is empty; admin analytics are unreachable",
        )
    return DeploymentCheck(
        name=name, status=CheckStatus.SUCCESS, message="All variables configured"
    )

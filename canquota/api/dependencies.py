from __future__ import annotations

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..core.security import (
    CredentialRejected,
    CredentialVerifier,
    JwtCredentialVerifier,
    VerifiedCredential,
)
from ..db import get_session
from ..domain.pagination import PaginationParams
from ..repositories.attempts import AttemptLogRepository, SqlAlchemyAttemptLogRepository
from ..repositories.usage import SqlAlchemyUsageRepository, UsageRepository
from ..services.identity import IdentityResolver
from ..services.quota import QuotaEnforcer

_http_bearer = HTTPBearer(auto_error=False)


async def get_usage_repository(
    session: AsyncSession = Depends(get_session),
) -> UsageRepository:
    return SqlAlchemyUsageRepository(session)


async def get_attempt_log_repository(
    session: AsyncSession = Depends(get_session),
) -> AttemptLogRepository:
    return SqlAlchemyAttemptLogRepository(session)


async def get_credential_verifier(
    settings: Settings = Depends(get_settings),
) -> CredentialVerifier:
    return JwtCredentialVerifier(settings)


async def get_identity_resolver(
    settings: Settings = Depends(get_settings),
    verifier: CredentialVerifier = Depends(get_credential_verifier),
) -> IdentityResolver:
    return IdentityResolver(settings, verifier)


async def get_quota_enforcer(
    settings: Settings = Depends(get_settings),
    usage: UsageRepository = Depends(get_usage_repository),
    attempts: AttemptLogRepository = Depends(get_attempt_log_repository),
) -> QuotaEnforcer:
    return QuotaEnforcer(usage, attempts, settings)


async def get_pagination_params(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> PaginationParams:
    return PaginationParams(limit=limit, offset=offset)


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(_http_bearer),
    settings: Settings = Depends(get_settings),
    verifier: CredentialVerifier = Depends(get_credential_verifier),
) -> VerifiedCredential:
    """Admin routes accept verified credentials whose email is allow-listed."""

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        credential = await verifier.verify(credentials.credentials)
    except CredentialRejected as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    if credential.email is None or credential.email not in settings.admin_emails:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return credential

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from .identity import Identity, LimitType
from .pagination import PaginationMeta


class AttemptLogCreate(BaseModel):
    """Payload describing one generation attempt seen by the enforcer."""

    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    ip_address: str
    fingerprint: str
    success: bool
    error_message: Optional[str] = Field(default=None, max_length=2000)
    limit_type: LimitType
    generations_before: int = Field(ge=0)
    generations_after: int = Field(ge=0)

    @classmethod
    def for_identity(
        cls,
        identity: Identity,
        *,
        success: bool,
        before: int,
        after: int,
        error_message: str | None = None,
    ) -> "AttemptLogCreate":
        return cls(
            user_id=identity.user_id,
            anonymous_id=None if identity.is_authenticated else identity.anonymous_id,
            ip_address=identity.ip_address,
            fingerprint=identity.fingerprint,
            success=success,
            error_message=error_message,
            limit_type=identity.limit_type,
            generations_before=before,
            generations_after=after,
        )


class AttemptLog(AttemptLogCreate):
    """Persisted, immutable attempt log entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class AttemptLogListResponse(BaseModel):
    data: list[AttemptLog]
    count: int
    pagination: PaginationMeta


class UsageAnalytics(BaseModel):
    """Aggregate view of the attempt log over a trailing window."""

    days: int
    total_generations: int
    successful_generations: int
    failed_generations: int
    unique_authenticated_users: int
    unique_anonymous_users: int
    total_unique_users: int

    @property
    def success_rate(self) -> float:
        if not self.total_generations:
            return 0.0
        return self.successful_generations / self.total_generations

    @classmethod
    def from_logs(cls, logs: list[AttemptLog], *, days: int) -> "UsageAnalytics":
        users = {log.user_id for log in logs if log.user_id}
        anonymous = {log.anonymous_id for log in logs if not log.user_id and log.anonymous_id}
        successes = sum(1 for log in logs if log.success)
        return cls(
            days=days,
            total_generations=len(logs),
            successful_generations=successes,
            failed_generations=len(logs) - successes,
            unique_authenticated_users=len(users),
            unique_anonymous_users=len(anonymous),
            total_unique_users=len(users) + len(anonymous),
        )


class RetentionReport(BaseModel):
    anonymous_usage_deleted: int = Field(ge=0)
    attempt_logs_deleted: int = Field(ge=0)

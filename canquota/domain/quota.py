"""Domain models describing daily generation quotas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .identity import LimitType

ANONYMOUS_DAILY_LIMIT = 5
AUTHENTICATED_DAILY_LIMIT = 10


class QuotaStatus(BaseModel):
    """Outcome of a quota check for one caller on one day."""

    used: int = Field(ge=0, description="Effective generations consumed today")
    remaining: int = Field(ge=0)
    limit: int = Field(ge=0, description="Daily cap applied to the caller")
    can_generate: bool
    limit_type: LimitType
    reset_time: datetime

    @property
    def is_authenticated(self) -> bool:
        return self.limit_type == LimitType.AUTHENTICATED


class RecordResult(BaseModel):
    """Outcome of recording a generation attempt."""

    success: bool = Field(description="True when a generation was counted")
    used: int = Field(ge=0)
    remaining: int = Field(ge=0)
    limit: int = Field(ge=0)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RateLimitRequest(_CamelModel):
    """Body accepted by the rate-limit endpoint."""

    action: Literal["check", "record"]
    fingerprint: str | None = None
    success: bool | None = None
    error_message: str | None = Field(default=None, max_length=2000)


class QuotaCheckResponse(_CamelModel):
    can_generate: bool
    generations_used: int
    generations_remaining: int
    reset_time: datetime
    is_authenticated: bool
    limit_type: LimitType

    @classmethod
    def from_status(cls, status: QuotaStatus) -> "QuotaCheckResponse":
        return cls(
            can_generate=status.can_generate,
            generations_used=status.used,
            generations_remaining=status.remaining,
            reset_time=status.reset_time,
            is_authenticated=status.is_authenticated,
            limit_type=status.limit_type,
        )


class QuotaRecordResponse(_CamelModel):
    success: bool
    generations_used: int
    generations_remaining: int

    @classmethod
    def from_result(cls, result: RecordResult) -> "QuotaRecordResponse":
        return cls(
            success=result.success,
            generations_used=result.used,
            generations_remaining=result.remaining,
        )

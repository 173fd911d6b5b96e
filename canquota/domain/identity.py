from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class LimitType(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


class Identity(BaseModel):
    """Resolved caller of the enforcement boundary.

    Authenticated callers are keyed by `user_id`, anonymous callers by the
    salted `anonymous_id` hash. The request IP and sanitized fingerprint ride
    along on both kinds because the attempt log records them.
    """

    limit_type: LimitType
    user_id: str | None = None
    anonymous_id: str | None = None
    ip_address: str = Field(min_length=1)
    fingerprint: str
    email: str | None = None

    @model_validator(mode="after")
    def _check_key(self) -> "Identity":
        if self.limit_type == LimitType.AUTHENTICATED and not self.user_id:
            raise ValueError("authenticated identity requires user_id")
        if self.limit_type == LimitType.ANONYMOUS and not self.anonymous_id:
            raise ValueError("anonymous identity requires anonymous_id")
        return self

    @classmethod
    def authenticated(
        cls,
        user_id: str,
        *,
        ip_address: str,
        fingerprint: str,
        email: str | None = None,
    ) -> "Identity":
        return cls(
            limit_type=LimitType.AUTHENTICATED,
            user_id=user_id,
            ip_address=ip_address,
            fingerprint=fingerprint,
            email=email,
        )

    @classmethod
    def anonymous(
        cls,
        anonymous_id: str,
        *,
        ip_address: str,
        fingerprint: str,
    ) -> "Identity":
        return cls(
            limit_type=LimitType.ANONYMOUS,
            anonymous_id=anonymous_id,
            ip_address=ip_address,
            fingerprint=fingerprint,
        )

    @property
    def is_authenticated(self) -> bool:
        return self.limit_type == LimitType.AUTHENTICATED

    @property
    def log_key(self) -> str:
        """Shortened key safe for log lines."""
        if self.is_authenticated:
            return f"user:{self.user_id}"
        return f"anon:{(self.anonymous_id or '')[:12]}"

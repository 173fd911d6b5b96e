"""
Error taxonomy for the quota service.

Every error raised across the enforcement boundary inherits from
QuotaServiceError, carries the HTTP status it maps to and knows how to
render its public payload.
"""

from __future__ import annotations

from typing import Any, Optional


class QuotaServiceError(Exception):
    """Base exception for all quota service errors."""

    status_code: int = 500
    code: str = "QUOTA_SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Public response body. Never includes internal detail."""
        return {"error": self.message}


class InvalidRequest(QuotaServiceError):
    """Missing/oversized fingerprint, undeterminable IP or malformed body."""

    status_code = 400
    code = "INVALID_REQUEST"


class QuotaExceeded(QuotaServiceError):
    """The caller has no generations left for today."""

    status_code = 429
    code = "QUOTA_EXCEEDED"

    def __init__(
        self,
        message: str = "Generation limit exceeded",
        *,
        used: int,
        limit: int,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.used = used
        self.limit = limit

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "canGenerate": False,
            "generationsUsed": self.used,
            "generationsRemaining": 0,
        }


class UpstreamUnavailable(QuotaServiceError):
    """The usage store or another collaborator timed out or failed."""

    status_code = 503
    code = "UPSTREAM_UNAVAILABLE"

    def __init__(
        self,
        message: str = "Usage service temporarily unavailable",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        # Clients switch to their local fallback cache on this hint.
        return {"error": self.message, "fallback": True}

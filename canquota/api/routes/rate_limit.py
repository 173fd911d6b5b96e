from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from ...core.errors import InvalidRequest
from ...domain.quota import (
    QuotaCheckResponse,
    QuotaRecordResponse,
    RateLimitRequest,
)
from ...services.identity import IdentityResolver
from ...services.quota import QuotaEnforcer
from ..dependencies import get_identity_resolver, get_quota_enforcer

router = APIRouter(tags=["rate-limit"])


@router.post(
    "/rate-limit",
    response_model=None,
    responses={
        200: {"description": "Quota status for `check`, updated counts for `record`"},
        400: {"description": "Malformed request, missing fingerprint or unknown client IP"},
        429: {"description": "Daily generation limit reached"},
        503: {"description": "Usage store unavailable; clients should fall back"},
    },
)
async def rate_limit(
    payload: RateLimitRequest,
    request: Request,
    authorization: str | None = Header(default=None),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    enforcer: QuotaEnforcer = Depends(get_quota_enforcer),
) -> JSONResponse:
    identity = await resolver.resolve(
        headers=request.headers,
        fingerprint=payload.fingerprint,
        client_host=request.client.host if request.client else None,
        authorization=authorization,
    )

    if payload.action == "check":
        status = await enforcer.check(identity)
        body = QuotaCheckResponse.from_status(status)
    else:
        if payload.success is None:
            raise InvalidRequest("Invalid action")
        result = await enforcer.record(
            identity,
            success=payload.success,
            error_message=payload.error_message,
        )
        body = QuotaRecordResponse.from_result(result)

    return JSONResponse(content=body.model_dump(mode="json", by_alias=True))

from __future__ import annotations

import httpx
import structlog
from pydantic import BaseModel

from ..core.errors import QuotaExceeded, UpstreamUnavailable
from ..domain.identity import LimitType
from .device import get_device_id
from .fallback import LocalQuotaCache, UsageStats, daily_limit
from .state import LocalStateStore

logger = structlog.get_logger(__name__)


class RecordOutcome(BaseModel):
    success: bool
    generations_used: int
    generations_remaining: int


class QuotaClient:
    """Talks to the rate-limit endpoint and degrades to the local cache.

    `check_usage` fails open onto the cache when the service is unreachable.
    `record_generation` fails closed: it mirrors the generation locally and
    raises UpstreamUnavailable instead of pretending the server counted it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        access_token: str | None = None,
        store: LocalStateStore | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._store = store or LocalStateStore()
        self._device_id = get_device_id(self._store)
        self._cache = LocalQuotaCache(self._store, self._device_id)
        self._timeout = httpx.Timeout(timeout)
        self._transport = transport

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def cache(self) -> LocalQuotaCache:
        return self._cache

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None

    def set_access_token(self, token: str | None) -> None:
        self._access_token = token

    async def _post(self, payload: dict) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            return await client.post(
                f"{self._base_url}/rate-limit",
                json=payload,
                headers=headers,
            )

    async def check_usage(self) -> UsageStats:
        try:
            response = await self._post({"action": "check", "fingerprint": self._device_id})
            if response.status_code >= 500:
                raise UpstreamUnavailable(f"rate-limit endpoint returned {response.status_code}")
            response.raise_for_status()
        except (httpx.HTTPError, UpstreamUnavailable) as exc:
            logger.warning("client.check.fallback", error=str(exc))
            return self._cache.status(self.is_authenticated)

        data = response.json()
        is_authenticated = bool(data["isAuthenticated"])
        return UsageStats(
            generations_used=data["generationsUsed"],
            generations_remaining=data["generationsRemaining"],
            can_generate=data["canGenerate"],
            reset_time=data["resetTime"],
            is_authenticated=is_authenticated,
            max_generations=daily_limit(is_authenticated),
            limit_type=LimitType(data["limitType"]),
            source="server",
        )

    async def record_generation(
        self,
        success: bool,
        error_message: str | None = None,
    ) -> RecordOutcome:
        payload = {
            "action": "record",
            "fingerprint": self._device_id,
            "success": success,
        }
        if error_message:
            payload["errorMessage"] = error_message
        try:
            response = await self._post(payload)
        except httpx.HTTPError as exc:
            self._mirror_locally(success)
            raise UpstreamUnavailable("usage could not be recorded") from exc

        if response.status_code == 429:
            data = response.json()
            limit = daily_limit(self.is_authenticated)
            raise QuotaExceeded(
                data.get("error", "Generation limit exceeded"),
                used=data.get("generationsUsed", limit),
                limit=limit,
            )
        if response.status_code >= 500:
            self._mirror_locally(success)
            raise UpstreamUnavailable(f"rate-limit endpoint returned {response.status_code}")
        response.raise_for_status()

        data = response.json()
        return RecordOutcome(
            success=data["success"],
            generations_used=data["generationsUsed"],
            generations_remaining=data["generationsRemaining"],
        )

    def _mirror_locally(self, success: bool) -> None:
        if success:
            self._cache.record(self.is_authenticated)

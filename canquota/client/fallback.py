"""Client Quota Cache: degraded, client-local quota approximation.

Used only while the rate-limit endpoint is unreachable. It is NOT a
security control: deleting the state file resets it. It mirrors the
server's caps and UTC day boundary so it can never allow more than the
authoritative service would.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from ..core.timeutil import Clock, next_reset_time, utc_now, utc_today
from ..domain.identity import LimitType
from ..domain.quota import ANONYMOUS_DAILY_LIMIT, AUTHENTICATED_DAILY_LIMIT
from .device import DEVICE_ID_KEY
from .state import LocalStateStore


class UsageStats(BaseModel):
    """Quota view shown to the caller, from the server or from the fallback."""

    generations_used: int
    generations_remaining: int
    can_generate: bool
    reset_time: datetime
    is_authenticated: bool
    max_generations: int
    limit_type: LimitType
    source: Literal["server", "fallback"] = "server"


def daily_limit(is_authenticated: bool) -> int:
    return AUTHENTICATED_DAILY_LIMIT if is_authenticated else ANONYMOUS_DAILY_LIMIT


class LocalQuotaCache:
    def __init__(
        self,
        store: LocalStateStore,
        device_id: str,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._device_id = device_id
        self._clock = clock or utc_now

    def _key(self, is_authenticated: bool) -> str:
        prefix = "auth" if is_authenticated else "anon"
        return f"{prefix}_usage_{self._device_id}"

    def _count_today(self, is_authenticated: bool) -> int:
        today = utc_today(self._clock()).isoformat()
        entry = self._store.get(self._key(is_authenticated))
        if not isinstance(entry, dict) or entry.get("date") != today:
            return 0
        count = entry.get("count", 0)
        return count if isinstance(count, int) and count > 0 else 0

    def status(self, is_authenticated: bool) -> UsageStats:
        limit = daily_limit(is_authenticated)
        used = min(self._count_today(is_authenticated), limit)
        remaining = max(0, limit - used)
        return UsageStats(
            generations_used=used,
            generations_remaining=remaining,
            can_generate=remaining > 0,
            reset_time=next_reset_time(self._clock()),
            is_authenticated=is_authenticated,
            max_generations=limit,
            limit_type=LimitType.AUTHENTICATED if is_authenticated else LimitType.ANONYMOUS,
            source="fallback",
        )

    def record(self, is_authenticated: bool) -> UsageStats:
        limit = daily_limit(is_authenticated)
        count = min(self._count_today(is_authenticated) + 1, limit)
        self._store.set(
            self._key(is_authenticated),
            {"date": utc_today(self._clock()).isoformat(), "count": count},
        )
        return self.status(is_authenticated)

    def clear(self) -> None:
        """Forget local usage and the device id. For debugging only."""

        stale = [
            key
            for key in self._store.keys()
            if "usage" in key or key == DEVICE_ID_KEY
        ]
        self._store.remove(*stale)

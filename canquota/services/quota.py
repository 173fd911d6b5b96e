"""Authoritative daily quota decisions.

`check` is read-only. `record` re-derives the caller's usage, refuses when
the cap is already reached and otherwise counts the generation through the
store's guarded upsert, so concurrent recorders for the same identity and
day can neither lose an increment nor push the row past the cap.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..core.config import Settings
from ..core.errors import QuotaExceeded, UpstreamUnavailable
from ..core.timeutil import Clock, next_reset_time, utc_now, utc_today
from ..domain.attempts import AttemptLogCreate
from ..domain.identity import Identity
from ..domain.quota import QuotaStatus, RecordResult
from ..repositories.attempts import AttemptLogRepository
from ..repositories.usage import UsageRepository
from ..telemetry.metrics import STORE_LATENCY, count_decision

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LIMIT_EXCEEDED_MESSAGE = "Generation limit exceeded"


class QuotaEnforcer:
    def __init__(
        self,
        usage: UsageRepository,
        attempts: AttemptLogRepository,
        settings: Settings,
        clock: Clock | None = None,
    ) -> None:
        self._usage = usage
        self._attempts = attempts
        self._settings = settings
        self._clock = clock or utc_now

    def limit_for(self, identity: Identity) -> int:
        return self._settings.daily_limit_for(identity.is_authenticated)

    async def check(self, identity: Identity) -> QuotaStatus:
        """Report today's usage for `identity` without touching any counter."""

        status = await self._bounded(self._check(identity), action="check")
        count_decision(
            "check",
            identity.limit_type.value,
            "allowed" if status.can_generate else "exhausted",
        )
        return status

    async def record(
        self,
        identity: Identity,
        *,
        success: bool,
        error_message: str | None = None,
    ) -> RecordResult:
        """Count one generation attempt for `identity`.

        Raises QuotaExceeded when the caller has nothing left, even if an
        earlier `check` said otherwise, and UpstreamUnavailable when the
        store cannot confirm the write.
        """

        return await self._bounded(
            self._record(identity, success=success, error_message=error_message),
            action="record",
        )

    async def current_usage(self, identity: Identity) -> int:
        """Effective usage for today.

        Anonymous callers are charged the larger of their own row and the
        whole IP's usage, so rotating fingerprints behind one address does
        not reset the allowance.
        """

        day = utc_today(self._clock())
        if identity.is_authenticated:
            return await self._usage.get_user_usage(user_id=identity.user_id, day=day)
        own = await self._usage.get_anonymous_usage(
            anonymous_id=identity.anonymous_id, day=day
        )
        ip_total = await self._usage.sum_ip_usage(ip_address=identity.ip_address, day=day)
        return max(own, ip_total)

    async def _check(self, identity: Identity) -> QuotaStatus:
        limit = self.limit_for(identity)
        used = await self.current_usage(identity)
        return QuotaStatus(
            used=used,
            remaining=max(0, limit - used),
            limit=limit,
            can_generate=used < limit,
            limit_type=identity.limit_type,
            reset_time=next_reset_time(self._clock()),
        )

    async def _record(
        self,
        identity: Identity,
        *,
        success: bool,
        error_message: str | None,
    ) -> RecordResult:
        limit = self.limit_for(identity)
        used = await self.current_usage(identity)

        if not success:
            await self._attempts.append(
                AttemptLogCreate.for_identity(
                    identity,
                    success=False,
                    before=used,
                    after=used,
                    error_message=error_message,
                )
            )
            count_decision("record", identity.limit_type.value, "failed")
            logger.info("quota.record.failed_generation", caller=identity.log_key, used=used)
            return RecordResult(
                success=False,
                used=used,
                remaining=max(0, limit - used),
                limit=limit,
            )

        if used >= limit:
            await self._reject(identity, used=used, limit=limit)

        now = self._clock()
        day = utc_today(now)
        if identity.is_authenticated:
            new_count = await self._usage.increment_user_usage(
                user_id=identity.user_id, day=day, limit=limit, now=now
            )
        else:
            new_count = await self._usage.increment_anonymous_usage(
                anonymous_id=identity.anonymous_id,
                ip_address=identity.ip_address,
                fingerprint=identity.fingerprint,
                day=day,
                limit=limit,
                now=now,
            )
        if new_count is None:
            # A concurrent recorder consumed the last slot after our read.
            await self._reject(identity, used=max(used, limit), limit=limit)

        # Counts come from the store after the write; other recorders may
        # have moved them since the read above.
        if identity.is_authenticated:
            after = new_count
        else:
            ip_total = await self._usage.sum_ip_usage(ip_address=identity.ip_address, day=day)
            after = max(new_count, ip_total)
        before = after - 1
        await self._attempts.append(
            AttemptLogCreate.for_identity(
                identity,
                success=True,
                before=before,
                after=after,
                error_message=error_message,
            )
        )
        count_decision("record", identity.limit_type.value, "accepted")
        logger.info(
            "quota.record.accepted",
            caller=identity.log_key,
            before=before,
            after=after,
            limit=limit,
        )
        return RecordResult(
            success=True,
            used=after,
            remaining=max(0, limit - after),
            limit=limit,
        )

    async def _reject(self, identity: Identity, *, used: int, limit: int) -> None:
        await self._attempts.append(
            AttemptLogCreate.for_identity(
                identity,
                success=False,
                before=used,
                after=used,
                error_message=LIMIT_EXCEEDED_MESSAGE,
            )
        )
        count_decision("record", identity.limit_type.value, "rejected")
        logger.info("quota.record.rejected", caller=identity.log_key, used=used, limit=limit)
        raise QuotaExceeded(LIMIT_EXCEEDED_MESSAGE, used=used, limit=limit)

    async def _bounded(self, operation: Awaitable[T], *, action: str) -> T:
        try:
            with STORE_LATENCY.labels(action).time():
                return await asyncio.wait_for(
                    operation, timeout=self._settings.store_timeout_seconds
                )
        except asyncio.TimeoutError as exc:
            logger.warning("quota.store.timeout", action=action)
            raise UpstreamUnavailable() from exc
        except SQLAlchemyError as exc:
            logger.error("quota.store.error", action=action, error=type(exc).__name__)
            raise UpstreamUnavailable() from exc

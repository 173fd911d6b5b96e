from __future__ import annotations

from datetime import datetime
from typing import Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.timeutil import Clock, to_naive_utc, utc_now
from ..domain.attempts import AttemptLog, AttemptLogCreate
from ..models.attempt_log import AttemptLogModel


class AttemptLogRepository(Protocol):
    async def append(self, payload: AttemptLogCreate) -> AttemptLog:
        """Persist an entry and commit the surrounding unit of work."""
        ...

    async def list_recent(
        self,
        *,
        since: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AttemptLog], int]:
        ...

    async def list_since(self, *, since: datetime) -> list[AttemptLog]:
        ...

    async def purge_anonymous_before(self, *, cutoff: datetime) -> int:
        ...


class InMemoryAttemptLogRepository:
    """In-memory attempt log for tests and local runs."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._entries: list[AttemptLog] = []
        self._clock = clock or utc_now

    async def append(self, payload: AttemptLogCreate) -> AttemptLog:
        entry = AttemptLog(**payload.model_dump(), created_at=to_naive_utc(self._clock()))
        self._entries.append(entry)
        return entry

    def _newest_first(self, since: datetime | None) -> list[AttemptLog]:
        entries = [
            entry for entry in self._entries if since is None or entry.created_at >= since
        ]
        entries.sort(key=lambda item: item.created_at, reverse=True)
        return entries

    async def list_recent(
        self,
        *,
        since: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AttemptLog], int]:
        entries = self._newest_first(since)
        return entries[offset : offset + limit], len(entries)

    async def list_since(self, *, since: datetime) -> list[AttemptLog]:
        return self._newest_first(since)

    async def purge_anonymous_before(self, *, cutoff: datetime) -> int:
        kept = [
            entry
            for entry in self._entries
            if entry.user_id is not None or entry.created_at >= cutoff
        ]
        removed = len(self._entries) - len(kept)
        self._entries = kept
        return removed

    @property
    def entries(self) -> list[AttemptLog]:
        return list(self._entries)


class SqlAlchemyAttemptLogRepository:
    """Postgres-backed attempt log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, payload: AttemptLogCreate) -> AttemptLog:
        model = AttemptLogModel(
            user_id=payload.user_id,
            anonymous_id=payload.anonymous_id,
            ip_address=payload.ip_address,
            fingerprint=payload.fingerprint,
            success=payload.success,
            error_message=payload.error_message,
            limit_type=payload.limit_type.value,
            generations_before=payload.generations_before,
            generations_after=payload.generations_after,
        )
        self._session.add(model)
        await self._session.flush()
        await self._session.commit()
        return AttemptLog.model_validate(model)

    async def list_recent(
        self,
        *,
        since: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AttemptLog], int]:
        query = select(AttemptLogModel)
        count_query = select(func.count()).select_from(AttemptLogModel)
        if since is not None:
            query = query.where(AttemptLogModel.created_at >= since)
            count_query = count_query.where(AttemptLogModel.created_at >= since)
        query = query.order_by(AttemptLogModel.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(query)
        total = await self._session.execute(count_query)
        return (
            [AttemptLog.model_validate(row) for row in result.scalars().all()],
            int(total.scalar_one()),
        )

    async def list_since(self, *, since: datetime) -> list[AttemptLog]:
        result = await self._session.execute(
            select(AttemptLogModel)
            .where(AttemptLogModel.created_at >= since)
            .order_by(AttemptLogModel.created_at.desc())
        )
        return [AttemptLog.model_validate(row) for row in result.scalars().all()]

    async def purge_anonymous_before(self, *, cutoff: datetime) -> int:
        result = await self._session.execute(
            delete(AttemptLogModel).where(
                AttemptLogModel.user_id.is_(None),
                AttemptLogModel.created_at < cutoff,
            )
        )
        await self._session.commit()
        return result.rowcount or 0

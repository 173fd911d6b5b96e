"""Daily usage counters for authenticated and anonymous callers."""

from __future__ import annotations

import hashlib
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol
from uuid import uuid4

from sqlalchemy import Date, DateTime, Uuid, delete, func, literal, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.timeutil import to_naive_utc
from ..models.usage import AnonymousUsageModel, UserUsageModel


class UsageRepository(Protocol):
    """Interface over the per-day usage tables.

    `increment_*` methods are the only writers of `generations_used`. They
    insert the row at 1 or add one to it in a single guarded statement and
    return the new per-row count, or `None` when the guard refused because
    the cap was reached concurrently. On SQL stores the increment joins the
    caller's open transaction; it is published by the attempt-log append
    that follows it.
    """

    async def get_user_usage(self, *, user_id: str, day: date) -> int:
        ...

    async def get_anonymous_usage(self, *, anonymous_id: str, day: date) -> int:
        ...

    async def sum_ip_usage(self, *, ip_address: str, day: date) -> int:
        """Total of every anonymous row sharing `ip_address` on `day`."""
        ...

    async def increment_user_usage(
        self,
        *,
        user_id: str,
        day: date,
        limit: int,
        now: datetime,
    ) -> int | None:
        ...

    async def increment_anonymous_usage(
        self,
        *,
        anonymous_id: str,
        ip_address: str,
        fingerprint: str,
        day: date,
        limit: int,
        now: datetime,
    ) -> int | None:
        ...

    async def purge_anonymous_before(self, *, cutoff: date) -> int:
        ...

    async def ping(self) -> None:
        ...


def ip_lock_key(ip_address: str, day: date) -> int:
    """Signed 64-bit advisory lock id for one IP on one day."""

    digest = hashlib.sha256(f"{ip_address}:{day.isoformat()}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


@dataclass
class _AnonymousRow:
    ip_address: str
    fingerprint: str
    generations_used: int = 0


class InMemoryUsageRepository:
    """Process-local store used by tests and single-process development runs.

    Every method body runs without awaiting, so each call is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._users: dict[tuple[str, date], int] = defaultdict(int)
        self._anonymous: dict[tuple[str, date], _AnonymousRow] = {}

    async def get_user_usage(self, *, user_id: str, day: date) -> int:
        return self._users.get((user_id, day), 0)

    async def get_anonymous_usage(self, *, anonymous_id: str, day: date) -> int:
        row = self._anonymous.get((anonymous_id, day))
        return row.generations_used if row else 0

    async def sum_ip_usage(self, *, ip_address: str, day: date) -> int:
        return sum(
            row.generations_used
            for (_, row_day), row in self._anonymous.items()
            if row_day == day and row.ip_address == ip_address
        )

    async def increment_user_usage(
        self,
        *,
        user_id: str,
        day: date,
        limit: int,
        now: datetime,
    ) -> int | None:
        key = (user_id, day)
        if self._users.get(key, 0) >= limit:
            return None
        self._users[key] += 1
        return self._users[key]

    async def increment_anonymous_usage(
        self,
        *,
        anonymous_id: str,
        ip_address: str,
        fingerprint: str,
        day: date,
        limit: int,
        now: datetime,
    ) -> int | None:
        key = (anonymous_id, day)
        row = self._anonymous.get(key)
        own = row.generations_used if row else 0
        ip_total = sum(
            other.generations_used
            for (_, other_day), other in self._anonymous.items()
            if other_day == day and other.ip_address == ip_address
        )
        if max(own, ip_total) >= limit:
            return None
        if row is None:
            row = _AnonymousRow(ip_address=ip_address, fingerprint=fingerprint)
            self._anonymous[key] = row
        row.generations_used += 1
        return row.generations_used

    async def purge_anonymous_before(self, *, cutoff: date) -> int:
        stale = [key for key in self._anonymous if key[1] < cutoff]
        for key in stale:
            del self._anonymous[key]
        return len(stale)

    async def ping(self) -> None:
        return None

    def seed_anonymous(
        self,
        *,
        anonymous_id: str,
        ip_address: str,
        fingerprint: str,
        day: date,
        generations_used: int,
    ) -> None:
        self._anonymous[(anonymous_id, day)] = _AnonymousRow(
            ip_address=ip_address,
            fingerprint=fingerprint,
            generations_used=generations_used,
        )

    def seed_user(self, *, user_id: str, day: date, generations_used: int) -> None:
        self._users[(user_id, day)] = generations_used


class SqlAlchemyUsageRepository:
    """Postgres/SQLite usage store built on guarded `ON CONFLICT` upserts."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def _dialect(self) -> str:
        return self._session.get_bind().dialect.name

    def _insert(self, table):
        if self._dialect == "postgresql":
            return pg_insert(table)
        if self._dialect == "sqlite":
            return sqlite_insert(table)
        raise RuntimeError(f"Unsupported database dialect for atomic upserts: {self._dialect}")

    async def get_user_usage(self, *, user_id: str, day: date) -> int:
        result = await self._session.execute(
            select(UserUsageModel.generations_used).where(
                UserUsageModel.user_id == user_id,
                UserUsageModel.date == day,
            )
        )
        return result.scalar_one_or_none() or 0

    async def get_anonymous_usage(self, *, anonymous_id: str, day: date) -> int:
        result = await self._session.execute(
            select(AnonymousUsageModel.generations_used).where(
                AnonymousUsageModel.anonymous_id == anonymous_id,
                AnonymousUsageModel.date == day,
            )
        )
        return result.scalar_one_or_none() or 0

    async def sum_ip_usage(self, *, ip_address: str, day: date) -> int:
        result = await self._session.execute(
            select(func.coalesce(func.sum(AnonymousUsageModel.generations_used), 0)).where(
                AnonymousUsageModel.ip_address == ip_address,
                AnonymousUsageModel.date == day,
            )
        )
        return int(result.scalar_one())

    async def increment_user_usage(
        self,
        *,
        user_id: str,
        day: date,
        limit: int,
        now: datetime,
    ) -> int | None:
        table = UserUsageModel.__table__
        timestamp = to_naive_utc(now)
        stmt = self._insert(table).values(
            user_id=user_id,
            date=day,
            generations_used=1,
            created_at=timestamp,
            updated_at=timestamp,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.date],
            set_={
                "generations_used": table.c.generations_used + 1,
                "updated_at": timestamp,
            },
            where=table.c.generations_used < limit,
        ).returning(table.c.generations_used)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def increment_anonymous_usage(
        self,
        *,
        anonymous_id: str,
        ip_address: str,
        fingerprint: str,
        day: date,
        limit: int,
        now: datetime,
    ) -> int | None:
        table = AnonymousUsageModel.__table__
        if self._dialect == "postgresql":
            # READ COMMITTED cannot see a concurrent first insert for another
            # fingerprint; serialize writers per (ip, day) until commit.
            await self._session.execute(
                select(func.pg_advisory_xact_lock(ip_lock_key(ip_address, day)))
            )

        others = table.alias("same_ip")
        # Usage of the other fingerprints on this IP, read inside the upsert.
        others_usage = (
            select(func.coalesce(func.sum(others.c.generations_used), 0))
            .where(
                others.c.ip_address == ip_address,
                others.c.date == day,
                others.c.anonymous_id != anonymous_id,
            )
            .scalar_subquery()
        )
        timestamp = to_naive_utc(now)
        # INSERT ... SELECT so a first row is refused once the IP is spent.
        new_row = select(
            literal(uuid4(), Uuid),
            literal(anonymous_id),
            literal(ip_address),
            literal(fingerprint),
            literal(day, Date),
            literal(1),
            literal(timestamp, DateTime),
            literal(timestamp, DateTime),
        ).where(others_usage < limit)
        stmt = self._insert(table).from_select(
            [
                table.c.id,
                table.c.anonymous_id,
                table.c.ip_address,
                table.c.fingerprint,
                table.c.date,
                table.c.generations_used,
                table.c.created_at,
                table.c.updated_at,
            ],
            new_row,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.anonymous_id, table.c.date],
            set_={
                "generations_used": table.c.generations_used + 1,
                "updated_at": timestamp,
            },
            where=(table.c.generations_used + others_usage) < limit,
        ).returning(table.c.generations_used)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def purge_anonymous_before(self, *, cutoff: date) -> int:
        result = await self._session.execute(
            delete(AnonymousUsageModel).where(AnonymousUsageModel.date < cutoff)
        )
        await self._session.commit()
        return result.rowcount or 0

    async def ping(self) -> None:
        await self._session.execute(select(UserUsageModel.id).limit(1))
        await self._session.execute(select(AnonymousUsageModel.id).limit(1))

"""
Time helpers for the daily quota window.

The quota day is the UTC calendar day. Server and fallback cache both use
these helpers so the reset boundary is identical everywhere.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current aware UTC time."""
    return datetime.now(timezone.utc)


def utc_today(now: datetime | None = None) -> date:
    """Quota day for the given instant."""
    now = now or utc_now()
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.date()


def next_reset_time(now: datetime | None = None) -> datetime:
    """Next UTC midnight after `now`."""
    today = utc_today(now)
    return datetime.combine(today + timedelta(days=1), time.min, tzinfo=timezone.utc)


def to_naive_utc(moment: datetime) -> datetime:
    """Strip tzinfo after converting to UTC, for DateTime(timezone=False) columns."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)

"""
Operator commands for the quota service.

Usage:
    canquota-manage init-db                   # Create missing tables
    canquota-manage migrate                   # Run alembic migrations to head
    canquota-manage sweep                     # Apply the retention policy
    canquota-manage analytics [days]          # Print attempt-log analytics (default 7 days)
    canquota-manage issue-token <user_id> [email]  # Mint a bearer token for testing
"""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import timedelta
from pathlib import Path

from .core.config import get_settings
from .core.logging import configure_logging
from .core.security import create_access_token
from .core.timeutil import to_naive_utc, utc_now
from .db import dispose_engine, get_sessionmaker, init_db
from .domain.attempts import UsageAnalytics
from .repositories.attempts import SqlAlchemyAttemptLogRepository
from .repositories.usage import SqlAlchemyUsageRepository
from .services.retention import run_retention_sweep

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


async def _init_db() -> None:
    await init_db()
    await dispose_engine()
    print("Tables created")


async def _sweep() -> None:
    settings = get_settings()
    async with get_sessionmaker()() as session:
        report = await run_retention_sweep(
            SqlAlchemyUsageRepository(session),
            SqlAlchemyAttemptLogRepository(session),
            settings,
        )
    await dispose_engine()
    print(report.model_dump_json(indent=2))


async def _analytics(days: int) -> None:
    since = to_naive_utc(utc_now()) - timedelta(days=days)
    async with get_sessionmaker()() as session:
        logs = await SqlAlchemyAttemptLogRepository(session).list_since(since=since)
    await dispose_engine()
    analytics = UsageAnalytics.from_logs(logs, days=days)
    payload = analytics.model_dump()
    payload["success_rate"] = round(analytics.success_rate * 100, 1)
    print(json.dumps(payload, indent=2))


def _migrate() -> None:
    from alembic import command
    from alembic.config import Config

    if not ALEMBIC_INI.exists():
        print(f"alembic.ini not found at {ALEMBIC_INI}")
        sys.exit(1)
    command.upgrade(Config(str(ALEMBIC_INI)), "head")
    print("Migrations completed")


def _issue_token(user_id: str, email: str | None) -> None:
    settings = get_settings()
    if not settings.jwt_secret:
        print("CANQUOTA_JWT_SECRET is not configured")
        sys.exit(1)
    claims = {"sub": user_id}
    if email:
        claims["email"] = email
    print(create_access_token(claims, settings=settings))


def main(argv: list[str] | None = None) -> None:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or args[0] in {"help", "--help", "-h"}:
        print(__doc__)
        sys.exit(0 if args else 1)

    configure_logging(get_settings().log_level)
    command_name = args[0].lower()
    if command_name == "init-db":
        asyncio.run(_init_db())
    elif command_name == "migrate":
        _migrate()
    elif command_name == "sweep":
        asyncio.run(_sweep())
    elif command_name == "analytics":
        days = int(args[1]) if len(args) > 1 else 7
        asyncio.run(_analytics(days))
    elif command_name == "issue-token":
        if len(args) < 2:
            print("Usage: canquota-manage issue-token <user_id> [email]")
            sys.exit(1)
        _issue_token(args[1], args[2] if len(args) > 2 else None)
    else:
        print(f"Unknown command: {command_name}")
        print(__doc__)
        sys.exit(1)


if __name__ == "__main__":
    main()

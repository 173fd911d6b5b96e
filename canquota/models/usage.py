"""SQLAlchemy models for per-day generation counters."""

from __future__ import annotations

from datetime import date as date_type, datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, DateTime, Index, Integer, String, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..db.session import Base


class UserUsageModel(Base):
    """Generations consumed by an authenticated user on one UTC day."""

    __tablename__ = "user_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_user_usage_user_date"),
        CheckConstraint("generations_used >= 0", name="non_negative"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    generations_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )


class AnonymousUsageModel(Base):
    """Generations consumed by one hashed (IP, fingerprint) pair on one UTC day."""

    __tablename__ = "anonymous_usage"
    __table_args__ = (
        UniqueConstraint("anonymous_id", "date", name="uq_anonymous_usage_id_date"),
        CheckConstraint("generations_used >= 0", name="non_negative"),
        Index("ix_anonymous_usage_ip_date", "ip_address", "date"),
        Index("ix_anonymous_usage_ip_fingerprint", "ip_address", "fingerprint"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    anonymous_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(500), nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    generations_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )

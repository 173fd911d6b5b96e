"""SQLAlchemy model for the append-only generation attempt log."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..db.session import Base


class AttemptLogModel(Base):
    """One accepted, failed or rejected generation attempt."""

    __tablename__ = "attempt_log"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    anonymous_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    ip_address: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, index=True, nullable=False
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    limit_type: Mapped[str] = mapped_column(String(16), index=True, nullable=False)
    generations_before: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generations_after: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

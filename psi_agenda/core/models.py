"""SQLAlchemy 2.0 async models for workspace settings storage."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class WorkspaceSettings(Base):
    """Per-workspace override buckets, stored as JSON documents."""

    __tablename__ = "workspace_settings"

    workspace_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    appointment_overrides: Mapped[dict] = mapped_column(JSON, default=dict)
    extra_sessions: Mapped[list] = mapped_column(JSON, default=list)
    payment_overrides: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

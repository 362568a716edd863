from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from snapshare.infra.db import Base, UUID_TYPE
from snapshare.settings import settings


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class EventPhoto(Base):
    __tablename__ = "event_photos"
    __table_args__ = (
        sa.Index("ix_event_photos_event_uploaded", "event_id", "uploaded_at"),
    )

    id: Mapped[str] = mapped_column(
        sa.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # No ON DELETE CASCADE: events are never deleted.
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID_TYPE, sa.ForeignKey("events.id"), nullable=False
    )
    file_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(sa.String(512), nullable=False, unique=True)
    file_size: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    content_type: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    is_approved: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=lambda: settings.photo_auto_approve
    )
    uploaded_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now(), nullable=False
    )

    event: Mapped["Event"] = relationship("Event", back_populates="photos")  # noqa: F821


class EventPhotoTombstone(Base):
    __tablename__ = "event_photo_tombstones"
    __table_args__ = (
        sa.Index("ix_event_photo_tombstones_pending", "processed_at", "created_at"),
    )

    tombstone_id: Mapped[uuid.UUID] = mapped_column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[uuid.UUID] = mapped_column(UUID_TYPE, nullable=False)
    photo_id: Mapped[str] = mapped_column(sa.String(36), nullable=False)
    storage_key: Mapped[str] = mapped_column(sa.String(512), nullable=False)
    attempts: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(sa.String(255))
    last_attempt_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True))
    processed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now(), nullable=False
    )

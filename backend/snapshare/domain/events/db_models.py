from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from snapshare.infra.db import Base, UUID_TYPE

TITLE_MAX_LENGTH = 200
MAX_PHOTOS_LIMIT = 1000


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        sa.CheckConstraint(
            f"max_photos >= 1 AND max_photos <= {MAX_PHOTOS_LIMIT}", name="ck_events_max_photos_range"
        ),
        sa.Index("ix_events_organizer_created", "organizer_id", "created_at"),
    )

    # Assigned by the service before insert so qr_code_data can embed it.
    id: Mapped[uuid.UUID] = mapped_column(UUID_TYPE, primary_key=True)
    organizer_id: Mapped[uuid.UUID] = mapped_column(
        UUID_TYPE, sa.ForeignKey("organizers.organizer_id"), nullable=False
    )
    title: Mapped[str] = mapped_column(sa.String(TITLE_MAX_LENGTH), nullable=False)
    description: Mapped[str | None] = mapped_column(sa.Text)
    location: Mapped[str | None] = mapped_column(sa.String(255))
    event_date: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    max_photos: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=100, server_default=sa.text("100")
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True, server_default=sa.true()
    )
    qr_code_data: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=sa.func.now(),
        nullable=False,
    )

    photos: Mapped[list["EventPhoto"]] = relationship(  # noqa: F821
        "EventPhoto", back_populates="event", passive_deletes="all"
    )

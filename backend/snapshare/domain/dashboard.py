import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.domain.events import service as event_service
from snapshare.domain.events.db_models import Event
from snapshare.domain.photos.db_models import EventPhoto


@dataclass
class DashboardStats:
    total_events: int
    active_events: int
    events_this_month: int
    total_photos: int


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compute_stats(events: list[Event], total_photos: int, *, now: datetime | None = None) -> DashboardStats:
    """Counters over an organizer's events; "this month" is the current UTC calendar month."""
    current = _as_utc(now or datetime.now(timezone.utc))
    this_month = 0
    for event in events:
        created = _as_utc(event.created_at)
        if created.year == current.year and created.month == current.month:
            this_month += 1
    return DashboardStats(
        total_events=len(events),
        active_events=sum(1 for event in events if event.is_active),
        events_this_month=this_month,
        total_photos=total_photos,
    )


async def count_organizer_photos(session: AsyncSession, organizer_id: uuid.UUID) -> int:
    stmt = (
        sa.select(sa.func.count(EventPhoto.id))
        .join(Event, Event.id == EventPhoto.event_id)
        .where(Event.organizer_id == organizer_id)
    )
    return int(await session.scalar(stmt) or 0)


async def load_dashboard(
    session: AsyncSession, organizer_id: uuid.UUID
) -> tuple[list[Event], DashboardStats]:
    events = await event_service.list_organizer_events(session, organizer_id)
    total_photos = await count_organizer_photos(session, organizer_id)
    return events, compute_stats(events, total_photos)

import logging
import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.domain.events.db_models import Event
from snapshare.domain.events.schemas import EventCreateRequest, EventUpdateRequest

logger = logging.getLogger(__name__)

GUEST_ROUTE_PREFIX = "/g"


def build_guest_url(origin: str, event_id: uuid.UUID) -> str:
    return f"{origin.rstrip('/')}{GUEST_ROUTE_PREFIX}/{event_id}"


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")


def _forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


async def create_event(
    session: AsyncSession,
    organizer_id: uuid.UUID,
    payload: EventCreateRequest,
    *,
    origin: str,
) -> Event:
    event_id = uuid.uuid4()
    event = Event(
        id=event_id,
        organizer_id=organizer_id,
        title=payload.title,
        description=payload.description,
        event_date=payload.event_date,
        location=payload.location,
        max_photos=payload.max_photos,
        is_active=payload.is_active,
        qr_code_data=build_guest_url(origin, event_id),
    )
    session.add(event)
    await session.commit()
    await session.refresh(event)
    logger.info(
        "event_created",
        extra={"extra": {"event_id": str(event.id), "organizer_id": str(organizer_id)}},
    )
    return event


async def get_event(session: AsyncSession, event_id: uuid.UUID) -> Event:
    event = await session.get(Event, event_id)
    if event is None:
        raise _not_found()
    return event


async def get_owned_event(
    session: AsyncSession, event_id: uuid.UUID, organizer_id: uuid.UUID
) -> Event:
    """Load an event for its organizer: 404 when missing, 403 when owned by someone else."""
    event = await get_event(session, event_id)
    if event.organizer_id != organizer_id:
        logger.warning(
            "event_access_forbidden",
            extra={"extra": {"event_id": str(event_id), "organizer_id": str(organizer_id)}},
        )
        raise _forbidden()
    return event


async def write_owned_event_fields(
    session: AsyncSession,
    event_id: uuid.UUID,
    organizer_id: uuid.UUID,
    values: dict,
) -> None:
    """Apply ``values`` with an UPDATE scoped to the owner; zero matched rows is a 403."""
    stmt = (
        sa.update(Event)
        .where(Event.id == event_id, Event.organizer_id == organizer_id)
        .values(**values, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session="fetch")
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        await session.rollback()
        raise _forbidden()


async def update_event(
    session: AsyncSession,
    event_id: uuid.UUID,
    organizer_id: uuid.UUID,
    payload: EventUpdateRequest,
) -> Event:
    event = await get_owned_event(session, event_id, organizer_id)
    await write_owned_event_fields(
        session,
        event_id,
        organizer_id,
        {
            "title": payload.title,
            "description": payload.description,
            "event_date": payload.event_date,
            "location": payload.location,
            "max_photos": payload.max_photos,
            "is_active": payload.is_active,
        },
    )
    await session.commit()
    await session.refresh(event)
    logger.info("event_updated", extra={"extra": {"event_id": str(event_id)}})
    return event


async def toggle_event_status(
    session: AsyncSession, event_id: uuid.UUID, organizer_id: uuid.UUID
) -> Event:
    event = await get_owned_event(session, event_id, organizer_id)
    await write_owned_event_fields(
        session, event_id, organizer_id, {"is_active": not event.is_active}
    )
    await session.commit()
    await session.refresh(event)
    logger.info(
        "event_status_toggled",
        extra={"extra": {"event_id": str(event_id), "is_active": event.is_active}},
    )
    return event


async def list_organizer_events(session: AsyncSession, organizer_id: uuid.UUID) -> list[Event]:
    stmt = (
        sa.select(Event)
        .where(Event.organizer_id == organizer_id)
        .order_by(Event.created_at.desc(), Event.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())

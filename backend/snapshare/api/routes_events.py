import logging
import uuid

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.api.organizer_auth import OrganizerIdentity, require_organizer
from snapshare.domain.events import service as event_service
from snapshare.domain.events.print_view import render_print_page
from snapshare.domain.events.qr import render_qr_png
from snapshare.domain.events.schemas import (
    EventCreateRequest,
    EventListResponse,
    EventResponse,
    EventUpdateRequest,
)
from snapshare.infra.db import get_db_session
from snapshare.settings import settings
from snapshare.shared.content_disposition import attachment_header

router = APIRouter(prefix="/v1/events", tags=["events"])
logger = logging.getLogger(__name__)


def resolve_public_origin(request: Request) -> str:
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    payload: EventCreateRequest,
    request: Request,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> EventResponse:
    event = await event_service.create_event(
        session, identity.organizer_id, payload, origin=resolve_public_origin(request)
    )
    return EventResponse.model_validate(event)


@router.get("", response_model=EventListResponse)
async def list_events(
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> EventListResponse:
    events = await event_service.list_organizer_events(session, identity.organizer_id)
    return EventListResponse(events=[EventResponse.model_validate(event) for event in events])


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: uuid.UUID,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> EventResponse:
    event = await event_service.get_owned_event(session, event_id, identity.organizer_id)
    return EventResponse.model_validate(event)


@router.put("/{event_id}", response_model=EventResponse)
async def update_event(
    event_id: uuid.UUID,
    payload: EventUpdateRequest,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> EventResponse:
    event = await event_service.update_event(session, event_id, identity.organizer_id, payload)
    return EventResponse.model_validate(event)


@router.patch("/{event_id}/status", response_model=EventResponse)
async def toggle_event_status(
    event_id: uuid.UUID,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> EventResponse:
    event = await event_service.toggle_event_status(session, event_id, identity.organizer_id)
    return EventResponse.model_validate(event)


@router.get("/{event_id}/qr.png", response_class=Response)
async def event_qr_png(
    event_id: uuid.UUID,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    event = await event_service.get_owned_event(session, event_id, identity.organizer_id)
    return Response(
        content=render_qr_png(event.qr_code_data),
        media_type="image/png",
        headers={"Cache-Control": "private, max-age=300"},
    )


@router.get("/{event_id}/qr/download", response_class=Response)
async def download_event_qr(
    event_id: uuid.UUID,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    event = await event_service.get_owned_event(session, event_id, identity.organizer_id)
    logger.info("event_qr_downloaded", extra={"extra": {"event_id": str(event_id)}})
    return Response(
        content=render_qr_png(event.qr_code_data),
        media_type="image/png",
        headers={"Content-Disposition": attachment_header(f"{event.title}-qr-code.png")},
    )


@router.get("/{event_id}/qr/print", response_class=HTMLResponse)
async def print_event_qr(
    event_id: uuid.UUID,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> HTMLResponse:
    event = await event_service.get_owned_event(session, event_id, identity.organizer_id)
    page = render_print_page(
        event, render_qr_png(event.qr_code_data), print_delay_ms=settings.qr_print_delay_ms
    )
    return HTMLResponse(page)

import uuid

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.api.organizer_auth import OrganizerIdentity, require_organizer
from snapshare.domain.events import service as event_service
from snapshare.domain.photos import archive as photo_archive
from snapshare.domain.photos import service as photo_service
from snapshare.domain.photos.schemas import (
    EventPhotoListResponse,
    EventPhotoResponse,
    PhotoApprovalRequest,
)
from snapshare.infra.db import get_db_session
from snapshare.infra.storage import resolve_storage_backend
from snapshare.shared.content_disposition import attachment_header

router = APIRouter(prefix="/v1/events/{event_id}/photos", tags=["event-photos"])


@router.get("", response_model=EventPhotoListResponse)
async def list_event_photos(
    event_id: uuid.UUID,
    request: Request,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> EventPhotoListResponse:
    storage = resolve_storage_backend(request.app.state)
    photos = await photo_service.list_event_photos(session, event_id, identity.organizer_id)
    return EventPhotoListResponse(
        photos=[EventPhotoResponse(**photo_service.photo_payload(photo, storage)) for photo in photos]
    )


@router.get("/archive", response_class=Response)
async def download_event_photos(
    event_id: uuid.UUID,
    request: Request,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    storage = resolve_storage_backend(request.app.state)
    event = await event_service.get_owned_event(session, event_id, identity.organizer_id)
    title = event.title
    payload, count = await photo_archive.build_photo_archive(
        session, event_id, identity.organizer_id, storage
    )
    return Response(
        content=payload,
        media_type="application/zip",
        headers={
            "Content-Disposition": attachment_header(f"{title}-photos.zip"),
            "X-Photo-Count": str(count),
        },
    )


@router.patch("/{photo_id}", response_model=EventPhotoResponse)
async def review_event_photo(
    event_id: uuid.UUID,
    photo_id: str,
    payload: PhotoApprovalRequest,
    request: Request,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> EventPhotoResponse:
    storage = resolve_storage_backend(request.app.state)
    photo = await photo_service.set_photo_approval(
        session, event_id, photo_id, identity.organizer_id, is_approved=payload.is_approved
    )
    return EventPhotoResponse(**photo_service.photo_payload(photo, storage))


@router.delete("/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event_photo(
    event_id: uuid.UUID,
    photo_id: str,
    request: Request,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    storage = resolve_storage_backend(request.app.state)
    await photo_service.delete_photo(
        session, event_id, photo_id, identity.organizer_id, storage=storage
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)

import uuid

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.domain import plans
from snapshare.domain.events import service as event_service
from snapshare.domain.events.schemas import PublicEventResponse
from snapshare.domain.photos import service as photo_service
from snapshare.domain.photos.schemas import (
    EventPhotoResponse,
    GalleryPhotoResponse,
    GalleryResponse,
    PhotoUploadResponse,
)
from snapshare.infra.db import get_db_session
from snapshare.infra.storage import resolve_storage_backend
from snapshare.settings import settings

router = APIRouter(prefix="/v1/public", tags=["public"])


class PlanResponse(BaseModel):
    plan_id: str
    name: str
    price_cents: int
    currency: str
    photos_per_event: int | None
    download_all: bool
    features: list[str]
    highlighted: bool


class PricingResponse(BaseModel):
    plans: list[PlanResponse]


@router.get("/events/{event_id}", response_model=PublicEventResponse)
async def get_public_event(
    event_id: uuid.UUID, session: AsyncSession = Depends(get_db_session)
) -> PublicEventResponse:
    event = await event_service.get_event(session, event_id)
    return PublicEventResponse.model_validate(event)


@router.get("/events/{event_id}/photos", response_model=GalleryResponse)
async def get_gallery(
    event_id: uuid.UUID, request: Request, session: AsyncSession = Depends(get_db_session)
) -> GalleryResponse:
    storage = resolve_storage_backend(request.app.state)
    photos = await photo_service.list_gallery_photos(session, event_id)
    return GalleryResponse(
        event_id=event_id,
        photos=[
            GalleryPhotoResponse(
                id=photo.id,
                file_name=photo.file_name,
                uploaded_at=photo.uploaded_at,
                url=storage.public_url(photo.file_path),
                placeholder_url=settings.gallery_placeholder_url,
            )
            for photo in photos
        ],
    )


@router.post(
    "/events/{event_id}/photos",
    response_model=PhotoUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_event_photos(
    event_id: uuid.UUID,
    request: Request,
    files: list[UploadFile] | None = File(None),
    session: AsyncSession = Depends(get_db_session),
) -> PhotoUploadResponse:
    storage = resolve_storage_backend(request.app.state)
    photos = await photo_service.upload_photos(session, event_id, files or [], storage)
    return PhotoUploadResponse(
        uploaded=len(photos),
        photos=[EventPhotoResponse(**photo_service.photo_payload(photo, storage)) for photo in photos],
        refresh_after_ms=settings.gallery_refresh_delay_ms,
    )


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing() -> PricingResponse:
    return PricingResponse(
        plans=[
            PlanResponse(
                plan_id=plan.plan_id,
                name=plan.name,
                price_cents=plan.price_cents,
                currency=plan.currency,
                photos_per_event=plan.limits.photos_per_event,
                download_all=plan.limits.download_all,
                features=list(plan.features),
                highlighted=plan.highlighted,
            )
            for plan in plans.list_plans()
        ]
    )

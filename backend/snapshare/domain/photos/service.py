import logging
import re
import secrets
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from fastapi import HTTPException, UploadFile, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.domain.events import service as event_service
from snapshare.domain.events.db_models import Event
from snapshare.domain.photos.db_models import EventPhoto, EventPhotoTombstone
from snapshare.infra.metrics import metrics
from snapshare.infra.storage.backends import StorageBackend, StoredObject
from snapshare.settings import settings

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 64 * 1024
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,10}$")
_MIME_EXTENSIONS = {
    "image/jpeg": ("jpg", "jpeg", "jpe"),
    "image/jpg": ("jpg", "jpeg", "jpe"),
    "image/png": ("png",),
    "image/webp": ("webp",),
    "image/gif": ("gif",),
    "image/heic": ("heic",),
    "image/heif": ("heif",),
}


def _allowed_mime_types() -> set[str]:
    return set(settings.photo_allowed_mimes)


def _max_bytes() -> int:
    return settings.photo_max_bytes


def _random_base36(length: int = 8) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def file_extension(original_name: str | None, content_type: str | None) -> str:
    """Key extension for an upload.

    The guest's own extension is kept only when it names the validated content
    type; anything else (``.html`` sent as ``image/png``) gets the type's
    canonical extension so ``/media`` never serves it as markup.
    """
    accepted = _MIME_EXTENSIONS.get((content_type or "").lower(), ())
    suffix = Path(original_name or "").suffix.lower().lstrip(".")
    if suffix and _EXTENSION_RE.match(suffix) and suffix in accepted:
        return suffix
    return accepted[0] if accepted else "bin"


def build_storage_key(
    event_id: uuid.UUID,
    original_name: str | None,
    content_type: str | None,
    *,
    now_ms: int | None = None,
) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    ext = file_extension(original_name, content_type)
    return f"{event_id}/{timestamp}-{_random_base36()}.{ext}"


def parse_key_timestamp_ms(key: str) -> int | None:
    """Upload time embedded in a storage key, or ``None`` for foreign keys."""
    _, _, name = key.rpartition("/")
    stamp, sep, _ = name.partition("-")
    if not sep or not stamp.isdigit():
        return None
    return int(stamp)


def _validate_content_type(content_type: str | None) -> str:
    if not content_type:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing content type")
    normalized = content_type.split(";", 1)[0].strip().lower()
    if normalized not in _allowed_mime_types():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported file type {normalized}"
        )
    return normalized


def _display_name(upload: UploadFile) -> str:
    name = Path(upload.filename or "").name or "photo"
    return name[:255]


def photo_payload(photo: EventPhoto, storage: StorageBackend) -> dict:
    return {
        "id": photo.id,
        "event_id": photo.event_id,
        "file_name": photo.file_name,
        "file_path": photo.file_path,
        "file_size": photo.file_size,
        "content_type": photo.content_type,
        "is_approved": photo.is_approved,
        "uploaded_at": photo.uploaded_at,
        "url": storage.public_url(photo.file_path),
        "placeholder_url": settings.gallery_placeholder_url,
    }


async def fetch_open_event(session: AsyncSession, event_id: uuid.UUID) -> Event:
    event = await event_service.get_event(session, event_id)
    if not event.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Event is not accepting uploads"
        )
    return event


async def save_photo(
    session: AsyncSession,
    event: Event,
    upload: UploadFile,
    storage: StorageBackend,
) -> EventPhoto:
    """Stream one guest file into storage and record it.

    A failed metadata insert removes the blob again; a blob that survives that
    removal is left for the storage janitor's orphan sweep.
    """
    event_id = event.id
    content_type = _validate_content_type(upload.content_type)
    key = build_storage_key(event_id, upload.filename, content_type)
    size = 0

    async def _stream():
        nonlocal size
        while True:
            chunk = await upload.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > _max_bytes():
                raise HTTPException(
                    status_code=status.HTTP_413_CONTENT_TOO_LARGE, detail="File too large"
                )
            yield chunk

    try:
        stored: StoredObject = await storage.put(key=key, body=_stream(), content_type=content_type)
    finally:
        await upload.close()

    photo = EventPhoto(
        event_id=event_id,
        file_name=_display_name(upload),
        file_path=stored.key,
        file_size=stored.size,
        content_type=content_type,
    )
    session.add(photo)
    try:
        await session.commit()
        await session.refresh(photo)
    except Exception:
        await session.rollback()
        logger.exception(
            "event_photo_save_failed_db",
            extra={"extra": {"event_id": str(event_id), "storage_key": stored.key}},
        )
        try:
            await storage.delete(key=stored.key)
        except Exception:  # noqa: BLE001
            logger.warning(
                "event_photo_orphaned_blob",
                extra={"extra": {"event_id": str(event_id), "storage_key": stored.key}},
            )
        raise

    logger.info(
        "event_photo_upload",
        extra={
            "extra": {
                "event_id": str(event_id),
                "photo_id": photo.id,
                "size_bytes": stored.size,
                "content_type": content_type,
            }
        },
    )
    return photo


async def upload_photos(
    session: AsyncSession,
    event_id: uuid.UUID,
    uploads: Iterable[UploadFile],
    storage: StorageBackend,
) -> list[EventPhoto]:
    """Store guest files one after another; the first failure aborts the batch.

    Files stored before the failure keep their records. The error carries the
    failing file's name and the underlying message.
    """
    files = [upload for upload in uploads if upload is not None]
    if not files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided")
    event = await fetch_open_event(session, event_id)

    saved: list[EventPhoto] = []
    for upload in files:
        name = _display_name(upload)
        try:
            photo = await save_photo(session, event, upload, storage)
        except HTTPException as exc:
            metrics.record_photo_upload("rejected")
            raise HTTPException(
                status_code=exc.status_code, detail=f"Upload failed for {name}: {exc.detail}"
            ) from exc
        except Exception as exc:  # noqa: BLE001
            metrics.record_photo_upload("error")
            logger.warning(
                "event_photo_upload_aborted",
                extra={
                    "extra": {
                        "event_id": str(event_id),
                        "saved": len(saved),
                        "error_type": type(exc).__name__,
                    }
                },
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Upload failed for {name}: {exc}",
            ) from exc
        metrics.record_photo_upload("stored", photo.file_size)
        saved.append(photo)
    return saved


async def list_gallery_photos(session: AsyncSession, event_id: uuid.UUID) -> list[EventPhoto]:
    await event_service.get_event(session, event_id)
    stmt = (
        select(EventPhoto)
        .where(EventPhoto.event_id == event_id, EventPhoto.is_approved.is_(True))
        .order_by(EventPhoto.uploaded_at.desc(), EventPhoto.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_event_photos(
    session: AsyncSession, event_id: uuid.UUID, organizer_id: uuid.UUID
) -> list[EventPhoto]:
    await event_service.get_owned_event(session, event_id, organizer_id)
    stmt = (
        select(EventPhoto)
        .where(EventPhoto.event_id == event_id)
        .order_by(EventPhoto.uploaded_at.desc(), EventPhoto.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_photo(
    session: AsyncSession, event_id: uuid.UUID, photo_id: str, organizer_id: uuid.UUID
) -> EventPhoto:
    await event_service.get_owned_event(session, event_id, organizer_id)
    stmt = select(EventPhoto).where(EventPhoto.event_id == event_id, EventPhoto.id == photo_id)
    photo = (await session.execute(stmt)).scalar_one_or_none()
    if photo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Photo not found")
    return photo


async def set_photo_approval(
    session: AsyncSession,
    event_id: uuid.UUID,
    photo_id: str,
    organizer_id: uuid.UUID,
    *,
    is_approved: bool,
) -> EventPhoto:
    photo = await get_photo(session, event_id, photo_id, organizer_id)
    photo.is_approved = is_approved
    try:
        await session.commit()
        await session.refresh(photo)
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        logger.exception(
            "event_photo_review_failed",
            extra={"extra": {"event_id": str(event_id), "photo_id": photo_id}},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Review failed"
        ) from exc
    logger.info(
        "event_photo_reviewed",
        extra={"extra": {"event_id": str(event_id), "photo_id": photo_id, "is_approved": is_approved}},
    )
    return photo


async def delete_photo(
    session: AsyncSession,
    event_id: uuid.UUID,
    photo_id: str,
    organizer_id: uuid.UUID,
    *,
    storage: StorageBackend,
) -> EventPhoto:
    """Remove the blob (best effort), then the row.

    A storage failure is logged and turned into a tombstone for the janitor;
    the row is deleted regardless, so the photo disappears from every listing.
    """
    photo = await get_photo(session, event_id, photo_id, organizer_id)
    storage_outcome = "deleted"
    try:
        await storage.delete(key=photo.file_path)
    except Exception as exc:  # noqa: BLE001
        storage_outcome = "deferred"
        now = datetime.now(timezone.utc)
        session.add(
            EventPhotoTombstone(
                event_id=event_id,
                photo_id=photo_id,
                storage_key=photo.file_path,
                attempts=1,
                last_error=str(exc)[:255],
                last_attempt_at=now,
            )
        )
        logger.warning(
            "event_photo_storage_delete_failed",
            extra={
                "extra": {
                    "event_id": str(event_id),
                    "photo_id": photo_id,
                    "storage_key": photo.file_path,
                    "error": str(exc),
                }
            },
        )

    try:
        await session.execute(delete(EventPhoto).where(EventPhoto.id == photo_id))
        await session.commit()
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        logger.exception(
            "event_photo_delete_failed",
            extra={"extra": {"event_id": str(event_id), "photo_id": photo_id}},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete photo record"
        ) from exc

    metrics.record_photo_delete(storage_outcome)
    logger.info(
        "event_photo_deleted",
        extra={"extra": {"event_id": str(event_id), "photo_id": photo_id, "storage": storage_outcome}},
    )
    return photo

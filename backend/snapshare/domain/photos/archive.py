import io
import logging
import re
import uuid
import zipfile

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.domain.photos import service as photo_service
from snapshare.infra.storage.backends import StorageBackend

logger = logging.getLogger(__name__)

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def _archive_name(index: int, file_name: str) -> str:
    safe = _UNSAFE_NAME.sub("_", file_name).strip("._") or "photo"
    return f"{index:03d}-{safe}"


async def build_photo_archive(
    session: AsyncSession,
    event_id: uuid.UUID,
    organizer_id: uuid.UUID,
    storage: StorageBackend,
) -> tuple[bytes, int]:
    """Zip every photo of an event, newest first.

    Returns the archive and the number of files in it. Blobs that can no longer
    be read are skipped.
    """
    photos = await photo_service.list_event_photos(session, event_id, organizer_id)
    if not photos:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No photos to download")

    buffer = io.BytesIO()
    included = 0
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as archive:
        for photo in photos:
            try:
                data = await storage.read(key=photo.file_path)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "event_photo_archive_skipped",
                    extra={
                        "extra": {
                            "event_id": str(event_id),
                            "photo_id": photo.id,
                            "error_type": type(exc).__name__,
                        }
                    },
                )
                continue
            included += 1
            archive.writestr(_archive_name(included, photo.file_name), data)

    logger.info(
        "event_photo_archive_built",
        extra={"extra": {"event_id": str(event_id), "photos": included, "total": len(photos)}},
    )
    return buffer.getvalue(), included

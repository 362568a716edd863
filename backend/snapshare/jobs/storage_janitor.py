import logging
import time
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.domain.photos.db_models import EventPhoto, EventPhotoTombstone
from snapshare.domain.photos.service import parse_key_timestamp_ms
from snapshare.infra.metrics import metrics
from snapshare.infra.storage.backends import StorageBackend
from snapshare.settings import settings

logger = logging.getLogger(__name__)

_LOOKUP_CHUNK = 500


async def retry_tombstones(
    session: AsyncSession,
    storage: StorageBackend,
    *,
    batch_size: int | None = None,
    max_attempts: int | None = None,
    retry_interval_seconds: int | None = None,
) -> dict[str, int]:
    """Retry blob deletions that failed while an organizer removed a photo."""

    limit = batch_size if batch_size is not None else settings.storage_delete_batch_size
    max_attempts = max_attempts if max_attempts is not None else settings.storage_delete_max_attempts
    retry_interval_seconds = (
        retry_interval_seconds
        if retry_interval_seconds is not None
        else settings.storage_delete_retry_interval_seconds
    )

    now = datetime.now(timezone.utc)
    stmt = select(EventPhotoTombstone).where(EventPhotoTombstone.processed_at.is_(None))
    if retry_interval_seconds > 0:
        retry_cutoff = now - timedelta(seconds=retry_interval_seconds)
        stmt = stmt.where(
            (EventPhotoTombstone.last_attempt_at.is_(None))
            | (EventPhotoTombstone.last_attempt_at <= retry_cutoff)
        )
    stmt = stmt.order_by(EventPhotoTombstone.created_at).limit(limit)
    tombstones = list((await session.execute(stmt)).scalars().all())

    processed = 0
    failed = 0
    for tombstone in tombstones:
        tombstone.last_attempt_at = now
        try:
            await storage.delete(key=tombstone.storage_key)
        except Exception as exc:  # noqa: BLE001
            tombstone.attempts += 1
            tombstone.last_error = str(exc)[:255]
            failed += 1
            if tombstone.attempts >= max_attempts:
                tombstone.processed_at = now
                tombstone.last_error = f"gave_up_after_{max_attempts}_attempts"
                logger.warning(
                    "event_photo_storage_delete_gave_up",
                    extra={
                        "extra": {
                            "tombstone_id": str(tombstone.tombstone_id),
                            "attempts": tombstone.attempts,
                        }
                    },
                )
            continue
        tombstone.processed_at = now
        tombstone.last_error = None
        processed += 1

    await session.commit()
    metrics.record_janitor("tombstone_processed", processed)
    metrics.record_janitor("tombstone_failed", failed)
    return {"processed": processed, "failed": failed}


async def sweep_orphans(
    session: AsyncSession,
    storage: StorageBackend,
    *,
    grace_seconds: int | None = None,
    now_ms: int | None = None,
) -> dict[str, int]:
    """Delete blobs that no photo record points at.

    Keys younger than the grace period may belong to an upload whose record is
    not committed yet and are left alone, as are keys without an upload
    timestamp.
    """

    grace = grace_seconds if grace_seconds is not None else settings.storage_orphan_grace_seconds
    current_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    cutoff_ms = current_ms - grace * 1000

    candidates: list[str] = []
    skipped = 0
    for key in await storage.list():
        uploaded_ms = parse_key_timestamp_ms(key)
        if uploaded_ms is None or uploaded_ms > cutoff_ms:
            skipped += 1
            continue
        candidates.append(key)

    deleted = 0
    failed = 0
    for start in range(0, len(candidates), _LOOKUP_CHUNK):
        chunk = candidates[start : start + _LOOKUP_CHUNK]
        result = await session.execute(select(EventPhoto.file_path).where(EventPhoto.file_path.in_(chunk)))
        referenced = set(result.scalars().all())
        orphans = [key for key in chunk if key not in referenced]
        if not orphans:
            continue
        try:
            await storage.remove(keys=orphans)
        except Exception as exc:  # noqa: BLE001
            failed += len(orphans)
            logger.warning(
                "storage_orphan_delete_failed",
                extra={
                    "extra": {
                        "orphan_count": len(orphans),
                        "first_key": orphans[0],
                        "error_type": type(exc).__name__,
                    }
                },
            )
            continue
        deleted += len(orphans)

    metrics.record_janitor("orphan_deleted", deleted)
    metrics.record_janitor("orphan_failed", failed)
    return {"orphans_deleted": deleted, "orphans_failed": failed, "orphans_skipped": skipped}


async def run_storage_janitor(
    session: AsyncSession,
    storage: StorageBackend,
    *,
    batch_size: int | None = None,
    max_attempts: int | None = None,
    retry_interval_seconds: int | None = None,
    grace_seconds: int | None = None,
) -> dict[str, int]:
    result = await retry_tombstones(
        session,
        storage,
        batch_size=batch_size,
        max_attempts=max_attempts,
        retry_interval_seconds=retry_interval_seconds,
    )
    result.update(await sweep_orphans(session, storage, grace_seconds=grace_seconds))
    logger.info("storage_janitor_cycle", extra={"extra": result})
    return result

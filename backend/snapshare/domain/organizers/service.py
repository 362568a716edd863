from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import sqlalchemy as sa
from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.domain.errors import DomainError
from snapshare.domain.organizers.db_models import Organizer, OrganizerSession
from snapshare.infra.auth import create_session_token, password_hasher_from_settings
from snapshare.settings import settings

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def default_display_name(email: str) -> str:
    return email.split("@", 1)[0]


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _ensure_password_length(password: str) -> None:
    if len(password) < settings.password_min_length:
        raise DomainError(
            detail=f"Password must be at least {settings.password_min_length} characters",
            title="Password too short",
        )


async def get_by_email(session: AsyncSession, email: str) -> Organizer | None:
    return await session.scalar(sa.select(Organizer).where(Organizer.email == normalize_email(email)))


async def register_organizer(
    session: AsyncSession,
    email: str,
    password: str,
    *,
    display_name: str | None = None,
) -> Organizer:
    _ensure_password_length(password)
    normalized = normalize_email(email)
    if await get_by_email(session, normalized):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    organizer = Organizer(
        email=normalized,
        password_hash=password_hasher_from_settings(settings).hash(password),
        display_name=(display_name or "").strip() or default_display_name(normalized),
    )
    session.add(organizer)
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered") from exc
    logger.info("organizer_registered", extra={"extra": {"organizer_id": str(organizer.organizer_id)}})
    return organizer


async def authenticate(session: AsyncSession, email: str, password: str) -> Organizer:
    organizer = await get_by_email(session, email)
    if not organizer or not organizer.is_active:
        raise ValueError("invalid_credentials")
    valid, upgraded = password_hasher_from_settings(settings).verify(password, organizer.password_hash)
    if not valid:
        raise ValueError("invalid_credentials")
    if upgraded and upgraded != organizer.password_hash:
        organizer.password_hash = upgraded
        await session.flush()
    return organizer


async def create_session(
    session: AsyncSession, organizer: Organizer, *, ttl_minutes: int
) -> OrganizerSession:
    now = datetime.now(timezone.utc)
    record = OrganizerSession(
        session_id=uuid.uuid4(),
        organizer_id=organizer.organizer_id,
        created_at=now,
        expires_at=now + timedelta(minutes=ttl_minutes),
    )
    session.add(record)
    await session.flush()
    return record


def build_session_token(record: OrganizerSession) -> str:
    return create_session_token(
        record.organizer_id,
        record.session_id,
        ttl_minutes=settings.auth_session_ttl_minutes,
        settings=settings,
    )


async def validate_session_record(
    session: AsyncSession, session_id: uuid.UUID
) -> OrganizerSession | None:
    record = await session.get(OrganizerSession, session_id)
    if not record:
        return None
    if record.revoked_at is not None or _as_utc(record.expires_at) < datetime.now(timezone.utc):
        return None
    return record


async def revoke_session(session: AsyncSession, session_id: uuid.UUID, *, reason: str = "logout") -> None:
    record = await session.get(OrganizerSession, session_id)
    if not record or record.revoked_at is not None:
        return
    record.revoked_at = datetime.now(timezone.utc)
    record.revoked_reason = reason


async def revoke_organizer_sessions(
    session: AsyncSession, organizer_id: uuid.UUID, *, reason: str
) -> None:
    await session.execute(
        sa.update(OrganizerSession)
        .where(OrganizerSession.organizer_id == organizer_id, OrganizerSession.revoked_at.is_(None))
        .values(revoked_at=datetime.now(timezone.utc), revoked_reason=reason)
    )


async def update_profile(
    session: AsyncSession,
    organizer: Organizer,
    *,
    changes: dict[str, str | None],
) -> Organizer:
    if "display_name" in changes:
        display_name = (changes["display_name"] or "").strip()
        organizer.display_name = display_name or default_display_name(organizer.email)
    if "avatar_url" in changes:
        organizer.avatar_url = (changes["avatar_url"] or "").strip() or None
    await session.flush()
    return organizer


async def change_email(session: AsyncSession, organizer: Organizer, new_email: str) -> Organizer:
    normalized = normalize_email(new_email)
    if normalized == organizer.email:
        raise DomainError(detail="New email must differ from the current one", title="Email unchanged")
    if await get_by_email(session, normalized):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    organizer.email = normalized
    await session.flush()
    logger.info("organizer_email_changed", extra={"extra": {"organizer_id": str(organizer.organizer_id)}})
    return organizer


async def change_password(
    session: AsyncSession,
    organizer: Organizer,
    *,
    current_password: str,
    new_password: str,
    confirm_password: str,
) -> None:
    if new_password != confirm_password:
        raise DomainError(detail="Passwords do not match", title="Password mismatch")
    _ensure_password_length(new_password)
    hasher = password_hasher_from_settings(settings)
    valid, _ = hasher.verify(current_password, organizer.password_hash)
    if not valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect"
        )
    organizer.password_hash = hasher.hash(new_password)
    organizer.password_changed_at = datetime.now(timezone.utc)
    await session.flush()


async def request_account_deletion(session: AsyncSession, organizer: Organizer) -> Organizer:
    if organizer.deletion_requested_at is None:
        organizer.deletion_requested_at = datetime.now(timezone.utc)
    await revoke_organizer_sessions(session, organizer.organizer_id, reason="account_deletion")
    await session.flush()
    logger.info(
        "organizer_deletion_requested", extra={"extra": {"organizer_id": str(organizer.organizer_id)}}
    )
    return organizer

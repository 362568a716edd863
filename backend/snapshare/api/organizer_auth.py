import logging
import uuid
from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.domain.organizers import service as organizer_service
from snapshare.domain.organizers.db_models import Organizer
from snapshare.infra.auth import decode_session_token
from snapshare.infra.db import get_db_session
from snapshare.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class OrganizerIdentity:
    organizer: Organizer
    session_id: uuid.UUID

    @property
    def organizer_id(self) -> uuid.UUID:
        return self.organizer.organizer_id


def _get_session_token(request: Request) -> str | None:
    authorization: str | None = request.headers.get("Authorization")
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return request.cookies.get(settings.auth_cookie_name)


def _unauthorized(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_organizer(
    request: Request, session: AsyncSession = Depends(get_db_session)
) -> OrganizerIdentity:
    """Resolve the signed-in organizer from a bearer token or the session cookie."""
    token = _get_session_token(request)
    if not token:
        raise _unauthorized("Authentication required")
    try:
        payload = decode_session_token(token, settings.auth_secret_key.get_secret_value())
        organizer_id = uuid.UUID(str(payload.get("sub")))
        session_id = uuid.UUID(str(payload.get("sid")))
    except (jwt.InvalidTokenError, ValueError):
        logger.info("organizer_token_invalid")
        raise _unauthorized("Invalid session token")

    record = await organizer_service.validate_session_record(session, session_id)
    if record is None or record.organizer_id != organizer_id:
        raise _unauthorized("Session expired or revoked")
    organizer = await session.get(Organizer, organizer_id)
    if organizer is None or not organizer.is_active:
        raise _unauthorized()

    request.state.organizer_id = organizer_id
    return OrganizerIdentity(organizer=organizer, session_id=session_id)

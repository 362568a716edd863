import uuid
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.api.organizer_auth import OrganizerIdentity, require_organizer
from snapshare.domain.organizers import service as organizer_service
from snapshare.domain.organizers.db_models import Organizer
from snapshare.infra.db import get_db_session
from snapshare.settings import settings

router = APIRouter(prefix="/v1/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    display_name: str | None = Field(None, max_length=120)


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    organizer_id: uuid.UUID


class OrganizerResponse(BaseModel):
    organizer_id: uuid.UUID
    email: str
    display_name: str | None = None
    avatar_url: str | None = None
    created_at: datetime
    deletion_requested_at: datetime | None = None


class ProfileUpdateRequest(BaseModel):
    display_name: str | None = Field(None, max_length=120)
    avatar_url: str | None = Field(None, max_length=500)


class EmailChangeRequest(BaseModel):
    email: EmailStr


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


def organizer_response(organizer: Organizer) -> OrganizerResponse:
    return OrganizerResponse(
        organizer_id=organizer.organizer_id,
        email=organizer.email,
        display_name=organizer.display_name,
        avatar_url=organizer.avatar_url,
        created_at=organizer.created_at,
        deletion_requested_at=organizer.deletion_requested_at,
    )


def _set_session_cookie(request: Request, response: Response, token: str) -> None:
    response.set_cookie(
        settings.auth_cookie_name,
        token,
        httponly=True,
        secure=settings.auth_cookie_secure and request.url.scheme == "https",
        samesite="lax",
        max_age=int(timedelta(minutes=settings.auth_session_ttl_minutes).total_seconds()),
    )


async def _issue_token(
    request: Request, response: Response, session: AsyncSession, organizer: Organizer
) -> TokenResponse:
    record = await organizer_service.create_session(
        session, organizer, ttl_minutes=settings.auth_session_ttl_minutes
    )
    token = organizer_service.build_session_token(record)
    await session.commit()
    _set_session_cookie(request, response, token)
    return TokenResponse(
        access_token=token,
        expires_at=record.expires_at,
        organizer_id=organizer.organizer_id,
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
) -> TokenResponse:
    organizer = await organizer_service.register_organizer(
        session, payload.email, payload.password, display_name=payload.display_name
    )
    return await _issue_token(request, response, session, organizer)


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
) -> TokenResponse:
    try:
        organizer = await organizer_service.authenticate(session, payload.email, payload.password)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password"
        ) from exc
    return await _issue_token(request, response, session, organizer)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    await organizer_service.revoke_session(session, identity.session_id, reason="logout")
    await session.commit()
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(settings.auth_cookie_name)
    return response


@router.get("/me", response_model=OrganizerResponse)
async def me(identity: OrganizerIdentity = Depends(require_organizer)) -> OrganizerResponse:
    return organizer_response(identity.organizer)


@router.patch("/profile", response_model=OrganizerResponse)
async def update_profile(
    payload: ProfileUpdateRequest,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> OrganizerResponse:
    changes = payload.model_dump(include=payload.model_fields_set)
    organizer = await organizer_service.update_profile(session, identity.organizer, changes=changes)
    await session.commit()
    return organizer_response(organizer)


@router.put("/email", response_model=OrganizerResponse)
async def change_email(
    payload: EmailChangeRequest,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> OrganizerResponse:
    organizer = await organizer_service.change_email(session, identity.organizer, payload.email)
    await session.commit()
    return organizer_response(organizer)


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    payload: ChangePasswordRequest,
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    await organizer_service.change_password(
        session,
        identity.organizer,
        current_password=payload.current_password,
        new_password=payload.new_password,
        confirm_password=payload.confirm_password,
    )
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/account/deletion-request", response_model=OrganizerResponse)
async def request_account_deletion(
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    organizer = await organizer_service.request_account_deletion(session, identity.organizer)
    await session.commit()
    body = organizer_response(organizer)
    response = Response(
        content=body.model_dump_json(), media_type="application/json", status_code=status.HTTP_202_ACCEPTED
    )
    response.delete_cookie(settings.auth_cookie_name)
    return response

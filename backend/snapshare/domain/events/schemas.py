import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from snapshare.domain.events.db_models import MAX_PHOTOS_LIMIT, TITLE_MAX_LENGTH
from snapshare.settings import settings


class _EventFields(BaseModel):
    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str | None = None
    event_date: datetime
    location: str | None = Field(None, max_length=255)
    max_photos: int = Field(default_factory=lambda: settings.event_default_max_photos, ge=1, le=MAX_PHOTOS_LIMIT)

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("title must not be blank")
        return stripped

    @field_validator("description", "location")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class EventCreateRequest(_EventFields):
    is_active: bool = True


class EventUpdateRequest(_EventFields):
    """Full replacement of every organizer-editable field."""

    max_photos: int = Field(ge=1, le=MAX_PHOTOS_LIMIT)
    is_active: bool


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organizer_id: uuid.UUID
    title: str
    description: str | None = None
    event_date: datetime
    location: str | None = None
    max_photos: int
    is_active: bool
    qr_code_data: str
    created_at: datetime
    updated_at: datetime


class EventListResponse(BaseModel):
    events: list[EventResponse]


class PublicEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: str | None = None
    event_date: datetime
    location: str | None = None
    is_active: bool
    max_photos: int

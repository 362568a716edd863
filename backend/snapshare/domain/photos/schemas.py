import uuid
from datetime import datetime

from pydantic import BaseModel


class EventPhotoResponse(BaseModel):
    id: str
    event_id: uuid.UUID
    file_name: str
    file_path: str
    file_size: int
    content_type: str
    is_approved: bool
    uploaded_at: datetime
    url: str
    placeholder_url: str


class EventPhotoListResponse(BaseModel):
    photos: list[EventPhotoResponse]


class GalleryPhotoResponse(BaseModel):
    id: str
    file_name: str
    uploaded_at: datetime
    url: str
    placeholder_url: str


class GalleryResponse(BaseModel):
    event_id: uuid.UUID
    photos: list[GalleryPhotoResponse]


class PhotoUploadResponse(BaseModel):
    uploaded: int
    photos: list[EventPhotoResponse]
    refresh_after_ms: int


class PhotoApprovalRequest(BaseModel):
    is_approved: bool

import mimetypes

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import FileResponse, Response

from snapshare.infra.storage import resolve_storage_backend
from snapshare.infra.storage.backends import InMemoryStorageBackend, LocalStorageBackend

router = APIRouter(include_in_schema=False)

_FALLBACK_MEDIA_TYPE = "application/octet-stream"
_MEDIA_HEADERS = {
    "Cache-Control": "public, max-age=86400, immutable",
    "Content-Disposition": "inline",
    "Content-Security-Policy": "default-src 'none'; img-src 'self'; sandbox",
}


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")


def _image_media_type(candidate: str | None) -> str:
    # anything that is not an image is sent as an opaque download
    if candidate and candidate.startswith("image/") and candidate != "image/svg+xml":
        return candidate
    return _FALLBACK_MEDIA_TYPE


@router.get("/media/{key:path}")
async def serve_media(key: str, request: Request) -> Response:
    """Serve stored photos for backends without their own public endpoint.

    Keys are immutable, so responses are cacheable for a day.
    """
    storage = resolve_storage_backend(request.app.state)
    if not storage.supports_direct_io():
        raise _not_found()
    if isinstance(storage, LocalStorageBackend):
        try:
            path = storage.path_for(key)
        except ValueError as exc:
            raise _not_found() from exc
        if not path.is_file():
            raise _not_found()
        media_type = _image_media_type(mimetypes.guess_type(path.name)[0])
        return FileResponse(path, media_type=media_type, headers=dict(_MEDIA_HEADERS))
    try:
        payload = await storage.read(key=key)
    except FileNotFoundError as exc:
        raise _not_found() from exc
    media_type = None
    if isinstance(storage, InMemoryStorageBackend):
        media_type = storage.content_type_for(key)
    return Response(
        content=payload,
        media_type=_image_media_type(media_type or mimetypes.guess_type(key)[0]),
        headers=dict(_MEDIA_HEADERS),
    )

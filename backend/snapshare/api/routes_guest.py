import html
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.domain.events import service as event_service
from snapshare.domain.events.db_models import Event
from snapshare.domain.events.print_view import format_event_date
from snapshare.domain.photos import service as photo_service
from snapshare.domain.photos.db_models import EventPhoto
from snapshare.infra.db import get_db_session
from snapshare.infra.storage import resolve_storage_backend
from snapshare.infra.storage.backends import StorageBackend
from snapshare.settings import settings

router = APIRouter(include_in_schema=False)


def _wrap_page(body: str, *, title: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{html.escape(title)}</title>
    <style>
      body {{ font-family: Arial, sans-serif; margin: 0; background: #f8fafc; color: #0f172a; }}
      .page {{ max-width: 960px; margin: 0 auto; padding: 16px; }}
      .card {{ background: #fff; border: 1px solid #e2e8f0; border-radius: 12px; padding: 16px; margin-bottom: 16px; }}
      h1 {{ margin: 0 0 8px; font-size: 26px; }}
      .muted {{ color: #64748b; font-size: 14px; margin: 2px 0; }}
      .notice {{ background: #fef3c7; border: 1px solid #fcd34d; border-radius: 10px; padding: 10px; }}
      .grid {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(160px, 1fr)); gap: 8px; }}
      .grid figure {{ margin: 0; }}
      .grid img {{ width: 100%; aspect-ratio: 1 / 1; object-fit: cover; border-radius: 8px; background: #e2e8f0; }}
      .button {{ padding: 10px 14px; border-radius: 10px; border: none; background: #0f172a; color: #fff; font-weight: 600; cursor: pointer; }}
      #upload-status {{ margin-top: 8px; font-size: 14px; }}
    </style>
  </head>
  <body>
    <div class="page">{body}</div>
  </body>
</html>
"""


def _render_upload_form(event: Event) -> str:
    if not event.is_active:
        return '<div class="notice" id="uploads-closed">Uploads are closed for this event.</div>'
    action = f"/v1/public/events/{event.id}/photos"
    return f"""
      <form id="upload-form" method="post" action="{html.escape(action, quote=True)}" enctype="multipart/form-data">
        <input type="file" name="files" accept="image/*" multiple required>
        <button class="button" type="submit">Upload photos</button>
        <div id="upload-status" role="status"></div>
      </form>
      <script>
        document.getElementById("upload-form").addEventListener("submit", async function (event) {{
          event.preventDefault();
          const form = event.target;
          const status = document.getElementById("upload-status");
          status.textContent = "Uploading...";
          const response = await fetch(form.action, {{ method: "POST", body: new FormData(form) }});
          const payload = await response.json();
          if (!response.ok) {{
            status.textContent = payload.detail || "Upload failed";
            return;
          }}
          status.textContent = payload.uploaded + " photo(s) uploaded. They appear once approved.";
          form.reset();
          setTimeout(function () {{ window.location.reload(); }}, payload.refresh_after_ms);
        }});
      </script>
    """


def _render_gallery(photos: list[EventPhoto], storage: StorageBackend) -> str:
    if not photos:
        return '<p class="muted" id="gallery-empty">No photos yet. Be the first to share one!</p>'
    placeholder = html.escape(settings.gallery_placeholder_url, quote=True)
    items = []
    for photo in photos:
        src = html.escape(storage.public_url(photo.file_path), quote=True)
        alt = html.escape(photo.file_name, quote=True)
        items.append(
            f'<figure><img src="{src}" alt="{alt}" loading="lazy" '
            f"onerror=\"this.onerror=null;this.src='{placeholder}';\"></figure>"
        )
    return f'<div class="grid" id="gallery">{"".join(items)}</div>'


def _render_event_page(event: Event, photos: list[EventPhoto], storage: StorageBackend) -> str:
    location = f'<p class="muted">{html.escape(event.location)}</p>' if event.location else ""
    description = (
        f"<p>{html.escape(event.description)}</p>" if event.description else ""
    )
    body = f"""
      <div class="card">
        <h1>{html.escape(event.title)}</h1>
        <p class="muted">{html.escape(format_event_date(event.event_date))}</p>
        {location}
        {description}
      </div>
      <div class="card">
        <h2>Share your photos</h2>
        {_render_upload_form(event)}
      </div>
      <div class="card">
        <h2>Gallery</h2>
        {_render_gallery(photos, storage)}
      </div>
    """
    return _wrap_page(body, title=event.title)


def _render_not_found() -> str:
    body = """
      <div class="card">
        <h1>Event not found</h1>
        <p class="muted">Check the link or QR code you were given.</p>
      </div>
    """
    return _wrap_page(body, title="Event not found")


async def _guest_page(event_id: uuid.UUID, request: Request, session: AsyncSession) -> HTMLResponse:
    storage = resolve_storage_backend(request.app.state)
    try:
        photos = await photo_service.list_gallery_photos(session, event_id)
    except HTTPException as exc:
        if exc.status_code == 404:
            return HTMLResponse(_render_not_found(), status_code=404)
        raise
    event = await event_service.get_event(session, event_id)
    return HTMLResponse(_render_event_page(event, photos, storage))


@router.get("/g/{event_id}", response_class=HTMLResponse)
async def guest_page(
    event_id: uuid.UUID, request: Request, session: AsyncSession = Depends(get_db_session)
) -> HTMLResponse:
    return await _guest_page(event_id, request, session)


@router.get("/guest/{event_id}", response_class=HTMLResponse)
async def guest_page_alias(
    event_id: uuid.UUID, request: Request, session: AsyncSession = Depends(get_db_session)
) -> HTMLResponse:
    return await _guest_page(event_id, request, session)

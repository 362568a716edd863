import io
import uuid

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from snapshare.domain.events.db_models import Event
from snapshare.domain.photos import service as photo_service
from snapshare.settings import settings

JPEG = b"\xff\xd8\xff\xe0" + b"0" * 256


def _files(*names: str, content_type: str = "image/jpeg", body: bytes = JPEG):
    return [("files", (name, body, content_type)) for name in names]


def _upload(client, event_id: str, files):
    return client.post(f"/v1/public/events/{event_id}/photos", files=files)


def test_guest_upload_stores_unapproved_photos(client, organizer_headers, make_event, storage):
    event = make_event()
    response = _upload(client, event["id"], _files("one.jpg", "two.jpg", "three.jpg"))
    assert response.status_code == 201
    body = response.json()
    assert body["uploaded"] == 3
    assert body["refresh_after_ms"] == settings.gallery_refresh_delay_ms
    assert all(photo["is_approved"] is False for photo in body["photos"])
    assert {photo["file_name"] for photo in body["photos"]} == {"one.jpg", "two.jpg", "three.jpg"}

    for photo in body["photos"]:
        assert photo["file_path"].startswith(f"{event['id']}/")
        assert photo["file_path"].endswith(".jpg")
        assert photo["file_size"] == len(JPEG)

    stored_keys = {photo["file_path"] for photo in body["photos"]}
    assert stored_keys <= set(storage._objects)

    listing = client.get(f"/v1/events/{event['id']}/photos", headers=organizer_headers)
    assert len(listing.json()["photos"]) == 3


def test_gallery_shows_only_approved_photos(client, organizer_headers, make_event):
    event = make_event()
    photos = _upload(client, event["id"], _files("a.jpg", "b.jpg")).json()["photos"]

    gallery = client.get(f"/v1/public/events/{event['id']}/photos")
    assert gallery.status_code == 200
    assert gallery.json()["photos"] == []

    review = client.patch(
        f"/v1/events/{event['id']}/photos/{photos[0]['id']}",
        json={"is_approved": True},
        headers=organizer_headers,
    )
    assert review.status_code == 200
    assert review.json()["is_approved"] is True

    visible = client.get(f"/v1/public/events/{event['id']}/photos").json()["photos"]
    assert [photo["id"] for photo in visible] == [photos[0]["id"]]
    assert visible[0]["placeholder_url"] == settings.gallery_placeholder_url
    assert visible[0]["url"].endswith(photos[0]["file_path"])


def test_auto_approve_setting(client, make_event):
    settings.photo_auto_approve = True
    event = make_event()
    body = _upload(client, event["id"], _files("a.jpg")).json()
    assert body["photos"][0]["is_approved"] is True
    assert len(client.get(f"/v1/public/events/{event['id']}/photos").json()["photos"]) == 1


def test_inactive_event_rejects_uploads(client, organizer_headers, make_event, storage):
    event = make_event(is_active=False)
    response = _upload(client, event["id"], _files("a.jpg"))
    assert response.status_code == 403
    assert response.json()["detail"] == "Event is not accepting uploads"
    assert storage._objects == {}


def test_unknown_event_is_404(client):
    response = _upload(client, str(uuid.uuid4()), _files("a.jpg"))
    assert response.status_code == 404


def test_empty_upload_is_400(client, make_event):
    event = make_event()
    response = client.post(f"/v1/public/events/{event['id']}/photos")
    assert response.status_code == 400
    assert response.json()["detail"] == "No files provided"


def test_unsupported_type_names_the_file(client, make_event, storage):
    event = make_event()
    response = _upload(client, event["id"], _files("notes.txt", content_type="text/plain"))
    assert response.status_code == 400
    assert response.json()["detail"] == "Upload failed for notes.txt: Unsupported file type text/plain"
    assert storage._objects == {}


@pytest.mark.filterwarnings("error:.*HTTP_413_REQUEST_ENTITY_TOO_LARGE")
def test_oversized_file_is_413(client, make_event, organizer_headers):
    settings.photo_max_bytes = 100
    event = make_event()
    response = _upload(client, event["id"], _files("big.jpg"))
    assert response.status_code == 413
    assert response.json()["detail"] == "Upload failed for big.jpg: File too large"
    listing = client.get(f"/v1/events/{event['id']}/photos", headers=organizer_headers)
    assert listing.json()["photos"] == []


def test_first_failure_stops_the_batch(client, make_event, organizer_headers):
    event = make_event()
    files = _files("good.jpg") + _files("bad.txt", content_type="text/plain") + _files("later.jpg")
    response = _upload(client, event["id"], files)
    assert response.status_code == 400

    listing = client.get(f"/v1/events/{event['id']}/photos", headers=organizer_headers).json()
    assert [photo["file_name"] for photo in listing["photos"]] == ["good.jpg"]


def test_max_photos_is_informational(client, make_event, organizer_headers):
    event = make_event(max_photos=2)
    for name in ("a.jpg", "b.jpg", "c.jpg"):
        assert _upload(client, event["id"], _files(name)).status_code == 201
    listing = client.get(f"/v1/events/{event['id']}/photos", headers=organizer_headers).json()
    assert len(listing["photos"]) == 3


def test_storage_failure_is_500_with_file_name(client_no_raise, make_event, storage, monkeypatch):
    event = make_event()

    async def broken_put(*, key, body, content_type):
        raise RuntimeError("bucket unavailable")

    monkeypatch.setattr(storage, "put", broken_put)
    response = _upload(client_no_raise, event["id"], _files("a.jpg"))
    assert response.status_code == 500
    assert response.json()["detail"] == "Upload failed for a.jpg: bucket unavailable"


@pytest.mark.parametrize(
    ("name", "content_type", "expected"),
    [
        ("holiday.JPEG", "image/jpeg", "jpeg"),
        ("no-extension", "image/png", "png"),
        ("weird.<>", "image/webp", "webp"),
        ("invite.html", "image/png", "png"),
        ("photo.jpg", "image/webp", "webp"),
        (None, "application/x-unknown", "bin"),
    ],
)
def test_file_extension(name, content_type, expected):
    assert photo_service.file_extension(name, content_type) == expected


def test_storage_key_layout():
    event_id = uuid.UUID("6f1c1a52-8d0e-4d0b-9a53-1f7f3f0b6a10")
    key = photo_service.build_storage_key(event_id, "p.png", "image/png", now_ms=1718370000123)
    prefix, _, name = key.partition("/")
    assert prefix == str(event_id)
    stamp, _, rest = name.partition("-")
    assert stamp == "1718370000123"
    token, _, ext = rest.partition(".")
    assert len(token) == 8 and token.isalnum() and token == token.lower()
    assert ext == "png"
    assert photo_service.parse_key_timestamp_ms(key) == 1718370000123
    assert photo_service.parse_key_timestamp_ms("imports/legacy.jpg") is None


@pytest.mark.anyio
async def test_failed_insert_removes_the_stored_blob(make_event, storage, async_session_maker):
    event_id = uuid.UUID(make_event()["id"])
    upload = UploadFile(
        file=io.BytesIO(JPEG),
        filename="lost.jpg",
        headers=Headers({"content-type": "image/jpeg"}),
    )

    async with async_session_maker() as session:
        event = await session.get(Event, event_id)

        async def broken_commit():
            raise RuntimeError("database went away")

        session.commit = broken_commit
        with pytest.raises(RuntimeError, match="database went away"):
            await photo_service.save_photo(session, event, upload, storage)

    assert not [key for key in storage._objects if key.startswith(f"{event_id}/")]

import io
import uuid
import zipfile

import pytest
import sqlalchemy as sa

from snapshare.domain.photos.db_models import EventPhoto, EventPhotoTombstone

JPEG = b"\xff\xd8\xff\xe0" + b"1" * 64


def _upload(client, event_id: str, *names: str) -> list[dict]:
    files = [("files", (name, JPEG + name.encode(), "image/jpeg")) for name in names]
    response = client.post(f"/v1/public/events/{event_id}/photos", files=files)
    assert response.status_code == 201, response.text
    return response.json()["photos"]


def test_photo_routes_are_owner_only(client, make_event, other_organizer_headers):
    event = make_event()
    photo = _upload(client, event["id"], "a.jpg")[0]
    base = f"/v1/events/{event['id']}/photos"

    assert client.get(base, headers=other_organizer_headers).status_code == 403
    assert (
        client.patch(f"{base}/{photo['id']}", json={"is_approved": True}, headers=other_organizer_headers).status_code
        == 403
    )
    assert client.delete(f"{base}/{photo['id']}", headers=other_organizer_headers).status_code == 403
    assert client.get(f"{base}/archive", headers=other_organizer_headers).status_code == 403
    assert client.get(base).status_code == 401


def test_unknown_photo_is_404(client, make_event, organizer_headers):
    event = make_event()
    response = client.patch(
        f"/v1/events/{event['id']}/photos/{uuid.uuid4()}",
        json={"is_approved": True},
        headers=organizer_headers,
    )
    assert response.status_code == 404
    assert response.json()["detail"] == "Photo not found"


def test_unapprove_hides_photo_again(client, make_event, organizer_headers):
    event = make_event()
    photo = _upload(client, event["id"], "a.jpg")[0]
    url = f"/v1/events/{event['id']}/photos/{photo['id']}"

    client.patch(url, json={"is_approved": True}, headers=organizer_headers)
    assert len(client.get(f"/v1/public/events/{event['id']}/photos").json()["photos"]) == 1

    client.patch(url, json={"is_approved": False}, headers=organizer_headers)
    assert client.get(f"/v1/public/events/{event['id']}/photos").json()["photos"] == []


def test_delete_removes_row_and_blob(client, make_event, organizer_headers, storage):
    event = make_event()
    photo = _upload(client, event["id"], "a.jpg")[0]
    assert photo["file_path"] in storage._objects

    response = client.delete(
        f"/v1/events/{event['id']}/photos/{photo['id']}", headers=organizer_headers
    )
    assert response.status_code == 204
    assert photo["file_path"] not in storage._objects
    assert client.get(f"/v1/events/{event['id']}/photos", headers=organizer_headers).json()["photos"] == []


@pytest.mark.anyio
async def test_delete_with_storage_failure_leaves_tombstone(
    client, make_event, organizer_headers, storage, async_session_maker, monkeypatch
):
    event = make_event()
    photo = _upload(client, event["id"], "a.jpg")[0]
    client.patch(
        f"/v1/events/{event['id']}/photos/{photo['id']}",
        json={"is_approved": True},
        headers=organizer_headers,
    )

    async def broken_delete(*, key):
        raise RuntimeError("storage offline")

    monkeypatch.setattr(storage, "delete", broken_delete)
    response = client.delete(
        f"/v1/events/{event['id']}/photos/{photo['id']}", headers=organizer_headers
    )
    assert response.status_code == 204
    assert client.get(f"/v1/public/events/{event['id']}/photos").json()["photos"] == []

    async with async_session_maker() as session:
        remaining = await session.scalar(sa.select(sa.func.count()).select_from(EventPhoto))
        tombstones = (await session.execute(sa.select(EventPhotoTombstone))).scalars().all()
    assert remaining == 0
    assert len(tombstones) == 1
    assert tombstones[0].storage_key == photo["file_path"]
    assert tombstones[0].attempts == 1
    assert tombstones[0].processed_at is None
    assert tombstones[0].last_error == "storage offline"


def test_archive_contains_every_photo(client, make_event, organizer_headers):
    event = make_event(title="Summer Wedding")
    _upload(client, event["id"], "first.jpg", "second.jpg")

    response = client.get(f"/v1/events/{event['id']}/photos/archive", headers=organizer_headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert response.headers["x-photo-count"] == "2"
    assert 'filename="Summer Wedding-photos.zip"' in response.headers["content-disposition"]

    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        names = archive.namelist()
        assert len(names) == 2
        assert all(name.startswith(("001-", "002-")) for name in names)
        contents = {archive.read(name) for name in names}
    assert contents == {JPEG + b"first.jpg", JPEG + b"second.jpg"}


def test_archive_skips_missing_blobs(client, make_event, organizer_headers, storage):
    event = make_event()
    photos = _upload(client, event["id"], "keep.jpg", "lost.jpg")
    lost = next(photo for photo in photos if photo["file_name"] == "lost.jpg")
    storage._objects.pop(lost["file_path"])

    response = client.get(f"/v1/events/{event['id']}/photos/archive", headers=organizer_headers)
    assert response.status_code == 200
    assert response.headers["x-photo-count"] == "1"


def test_archive_without_photos_is_404(client, make_event, organizer_headers):
    event = make_event()
    response = client.get(f"/v1/events/{event['id']}/photos/archive", headers=organizer_headers)
    assert response.status_code == 404

import uuid

import pytest
from fastapi import HTTPException

from snapshare.domain.events import service as event_service
from snapshare.domain.events.db_models import Event
from snapshare.settings import settings


def test_create_event_builds_guest_link(client, organizer_headers):
    response = client.post(
        "/v1/events",
        json={"title": "  Summer Wedding  ", "event_date": "2025-06-14T15:00:00Z", "location": " "},
        headers=organizer_headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["title"] == "Summer Wedding"
    assert body["location"] is None
    assert body["is_active"] is True
    assert body["max_photos"] == 100
    assert body["qr_code_data"] == f"http://testserver/g/{body['id']}"


def test_create_event_uses_public_base_url(client, organizer_headers):
    settings.public_base_url = "https://photos.example.com/"
    response = client.post(
        "/v1/events",
        json={"title": "Gala", "event_date": "2025-06-14T15:00:00Z"},
        headers=organizer_headers,
    )
    body = response.json()
    assert body["qr_code_data"] == f"https://photos.example.com/g/{body['id']}"


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "   "},
        {"title": "x" * 201},
        {"max_photos": 0},
        {"max_photos": 1001},
        {"event_date": "not-a-date"},
    ],
)
def test_create_event_validation(client, organizer_headers, overrides):
    payload = {"title": "Gala", "event_date": "2025-06-14T15:00:00Z"}
    payload.update(overrides)
    response = client.post("/v1/events", json=payload, headers=organizer_headers)
    assert response.status_code == 422
    assert response.json()["errors"]


def test_owner_lists_only_own_events(client, organizer_headers, other_organizer_headers, make_event):
    first = make_event(title="First")
    second = make_event(title="Second")
    make_event(headers=other_organizer_headers, title="Someone else")

    response = client.get("/v1/events", headers=organizer_headers)
    ids = [event["id"] for event in response.json()["events"]]
    assert set(ids) == {first["id"], second["id"]}
    assert ids[0] == second["id"]


def test_update_event_replaces_fields(client, organizer_headers, make_event):
    event = make_event()
    response = client.put(
        f"/v1/events/{event['id']}",
        json={
            "title": "Renamed",
            "description": None,
            "event_date": "2025-07-01T10:00:00Z",
            "location": "Garden",
            "max_photos": 20,
            "is_active": False,
        },
        headers=organizer_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Renamed"
    assert body["description"] is None
    assert body["max_photos"] == 20
    assert body["is_active"] is False
    assert body["qr_code_data"] == event["qr_code_data"]


def test_toggle_status_flips_flag(client, organizer_headers, make_event):
    event = make_event()
    first = client.patch(f"/v1/events/{event['id']}/status", headers=organizer_headers)
    assert first.json()["is_active"] is False
    second = client.patch(f"/v1/events/{event['id']}/status", headers=organizer_headers)
    assert second.json()["is_active"] is True


def test_non_owner_gets_403_and_event_is_unchanged(
    client, organizer_headers, other_organizer_headers, make_event
):
    event = make_event()
    update = {
        "title": "Hijacked",
        "event_date": "2025-07-01T10:00:00Z",
        "max_photos": 5,
        "is_active": False,
    }

    assert client.get(f"/v1/events/{event['id']}", headers=other_organizer_headers).status_code == 403
    assert (
        client.put(f"/v1/events/{event['id']}", json=update, headers=other_organizer_headers).status_code
        == 403
    )
    assert (
        client.patch(f"/v1/events/{event['id']}/status", headers=other_organizer_headers).status_code
        == 403
    )
    assert client.get(f"/v1/events/{event['id']}/qr.png", headers=other_organizer_headers).status_code == 403

    current = client.get(f"/v1/events/{event['id']}", headers=organizer_headers).json()
    assert current["title"] == event["title"]
    assert current["is_active"] is True
    assert current["max_photos"] == event["max_photos"]


def test_unknown_event_is_404(client, organizer_headers):
    response = client.get(f"/v1/events/{uuid.uuid4()}", headers=organizer_headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "Event not found"


@pytest.mark.anyio
async def test_owner_scoped_write_refuses_foreign_rows(async_session_maker, client, make_event, organizer_headers):
    event = make_event()
    event_id = uuid.UUID(event["id"])

    async with async_session_maker() as session:
        with pytest.raises(HTTPException) as exc_info:
            await event_service.write_owned_event_fields(
                session, event_id, uuid.uuid4(), {"title": "Hijacked"}
            )
        assert exc_info.value.status_code == 403

    async with async_session_maker() as session:
        stored = await session.get(Event, event_id)
        assert stored.title == event["title"]

from pathlib import Path

from snapshare.infra.storage.backends import LocalStorageBackend
from snapshare.main import app

JPEG = b"\xff\xd8\xff\xe0" + b"3" * 48


def test_media_route_serves_memory_objects(client, make_event):
    event = make_event()
    photo = client.post(
        f"/v1/public/events/{event['id']}/photos",
        files=[("files", ("a.jpg", JPEG, "image/jpeg"))],
    ).json()["photos"][0]

    response = client.get(photo["url"])
    assert response.status_code == 200
    assert response.content == JPEG
    assert response.headers["content-type"] == "image/jpeg"
    assert "immutable" in response.headers["cache-control"]


def test_media_route_serves_local_files(client, tmp_path: Path):
    backend = LocalStorageBackend(tmp_path)
    app.state.storage_backend = backend
    target = tmp_path / "event" / "1718370000123-abcd1234.png"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"\x89PNG fake")

    response = client.get("/media/event/1718370000123-abcd1234.png")
    assert response.status_code == 200
    assert response.content == b"\x89PNG fake"
    assert response.headers["content-type"] == "image/png"


def test_media_route_missing_and_traversal(client, tmp_path: Path):
    app.state.storage_backend = LocalStorageBackend(tmp_path / "root")
    (tmp_path / "secret.txt").write_text("nope")

    assert client.get("/media/missing.jpg").status_code == 404
    assert client.get("/media/..%2Fsecret.txt").status_code == 404


def test_guest_markup_is_never_served_as_html(client, make_event, tmp_path: Path):
    app.state.storage_backend = LocalStorageBackend(tmp_path)
    event = make_event()
    markup = b"<html><script>fetch('/v1/auth/me')</script></html>"
    photo = client.post(
        f"/v1/public/events/{event['id']}/photos",
        files=[("files", ("invite.html", markup, "image/png"))],
    ).json()["photos"][0]
    assert photo["file_path"].endswith(".png")

    response = client.get(f"/media/{photo['file_path']}")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert "sandbox" in response.headers["content-security-policy"]
    assert "script-src" not in response.headers["content-security-policy"]
    assert response.headers["x-content-type-options"] == "nosniff"


def test_media_route_never_labels_stored_files_as_markup(client, tmp_path: Path):
    app.state.storage_backend = LocalStorageBackend(tmp_path)
    target = tmp_path / "event" / "1718370000123-abcd1234.html"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"<script>alert(1)</script>")

    response = client.get("/media/event/1718370000123-abcd1234.html")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/octet-stream"
    assert response.headers["content-disposition"] == "inline"

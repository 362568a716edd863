import logging

from snapshare.domain import plans
from snapshare.infra.logging import RedactingJsonFormatter, clear_log_context, update_log_context
from snapshare.main import app


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.head("/healthz").status_code == 200


def test_readyz_reports_checks(client):
    response = client.get("/readyz")
    body = response.json()
    names = [check["name"] for check in body["checks"]]
    assert names == ["db", "storage"]
    storage_check = body["checks"][1]
    assert storage_check["ok"] is True
    assert storage_check["detail"]["backend"] == "InMemoryStorageBackend"
    # test schema is built with create_all, so no alembic revision is recorded
    assert response.status_code == 503
    assert body["checks"][0]["detail"]["message"] == "migrations pending"


def test_request_id_and_security_headers(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert response.headers["x-request-id"] == "req-123"
    assert response.headers["x-content-type-options"] == "nosniff"
    assert "img-src 'self' data: https:" in response.headers["content-security-policy"]


def test_metrics_endpoint_exposes_upload_counters(client, make_event):
    event = make_event()
    client.post(
        f"/v1/public/events/{event['id']}/photos",
        files=[("files", ("a.jpg", b"\xff\xd8\xff", "image/jpeg"))],
    )
    response = client.get("/metrics")
    assert response.status_code == 200
    assert 'event_photo_uploads_total{outcome="stored"}' in response.text
    assert "http_requests_total" in response.text


def test_metrics_token_is_enforced(client):
    app.state.app_settings.metrics_token = "scrape-me"
    assert client.get("/metrics").status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer scrape-me"}).status_code == 200
    assert client.get("/metrics?token=scrape-me").status_code == 200


def test_unhandled_errors_become_problem_details(client_no_raise, monkeypatch):
    def explode():
        raise RuntimeError("boom")

    monkeypatch.setattr(plans, "list_plans", explode)
    response = client_no_raise.get("/v1/public/pricing")
    assert response.status_code == 500
    body = response.json()
    assert body["detail"] == "Unexpected error"
    assert body["type"].endswith("/server-error")


def test_log_formatter_redacts_sensitive_values():
    update_log_context(request_id="abc")
    record = logging.LogRecord("snapshare", logging.INFO, __file__, 1, "login for a@example.com", (), None)
    record.extra = {"email": "a@example.com", "token": "secret", "event_id": "e1"}
    try:
        output = RedactingJsonFormatter().format(record)
    finally:
        clear_log_context()
    assert "a@example.com" not in output
    assert "secret" not in output
    assert '"event_id": "e1"' in output
    assert '"request_id": "abc"' in output

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.http_requests = None
            self.http_5xx = None
            self.http_latency = None
            self.http_429 = None
            self.photo_uploads = None
            self.photo_upload_bytes = None
            self.photo_deletes = None
            self.janitor_objects = None
            self.circuit_state = None
            return

        self.http_requests = Counter(
            "http_requests_total",
            "HTTP requests by method, route and status class.",
            ["method", "path", "status_class"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP 5xx responses by method and route.",
            ["method", "path"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency by method, route and status class.",
            ["method", "path", "status_class"],
            registry=self.registry,
        )
        self.http_429 = Counter(
            "http_429_total",
            "Requests rejected by the rate limiter.",
            ["bucket"],
            registry=self.registry,
        )
        self.photo_uploads = Counter(
            "event_photo_uploads_total",
            "Guest photo uploads by outcome.",
            ["outcome"],
            registry=self.registry,
        )
        self.photo_upload_bytes = Counter(
            "event_photo_upload_bytes_total",
            "Bytes stored by guest photo uploads.",
            registry=self.registry,
        )
        self.photo_deletes = Counter(
            "event_photo_deletes_total",
            "Organizer photo deletions by storage outcome.",
            ["storage"],
            registry=self.registry,
        )
        self.janitor_objects = Counter(
            "storage_janitor_objects_total",
            "Storage janitor outcomes by action.",
            ["action"],
            registry=self.registry,
        )
        self.circuit_state = Gauge(
            "circuit_state",
            "Circuit breaker state (0 closed, 0.5 half-open, 1 open).",
            ["circuit"],
            registry=self.registry,
        )

    def record_http_request(self, method: str, path: str, status_code: int) -> None:
        if not self.enabled or self.http_requests is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        self.http_requests.labels(method=method, path=path, status_class=status_class).inc()

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        if not self.enabled or self.http_latency is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        duration_seconds = max(0.0, float(duration_seconds))
        self.http_latency.labels(method=method, path=path, status_class=status_class).observe(
            duration_seconds
        )

    def record_http_429(self, bucket: str) -> None:
        if not self.enabled or self.http_429 is None:
            return
        self.http_429.labels(bucket=bucket or "other").inc()

    def record_photo_upload(self, outcome: str, size_bytes: int = 0) -> None:
        if not self.enabled or self.photo_uploads is None:
            return
        self.photo_uploads.labels(outcome=outcome or "unknown").inc()
        if size_bytes > 0 and self.photo_upload_bytes is not None:
            self.photo_upload_bytes.inc(size_bytes)

    def record_photo_delete(self, storage_outcome: str) -> None:
        if not self.enabled or self.photo_deletes is None:
            return
        self.photo_deletes.labels(storage=storage_outcome or "unknown").inc()

    def record_janitor(self, action: str, count: int = 1) -> None:
        if not self.enabled or self.janitor_objects is None:
            return
        if count <= 0:
            return
        self.janitor_objects.labels(action=action).inc(count)

    def record_circuit_state(self, circuit: str, state: str) -> None:
        if not self.enabled or self.circuit_state is None:
            return
        value = {"closed": 0, "half_open": 0.5, "open": 1}.get(state, -1)
        self.circuit_state.labels(circuit=circuit).set(value)

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics

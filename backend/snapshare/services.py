from __future__ import annotations

from dataclasses import dataclass

from snapshare.infra.metrics import Metrics, configure_metrics
from snapshare.infra.security import RateLimiter, create_rate_limiter
from snapshare.infra.storage import StorageBackend, new_storage_backend


@dataclass
class AppServices:
    """Typed container for runtime services stored on `app.state.services`."""

    storage: StorageBackend
    rate_limiter: RateLimiter
    metrics: Metrics


def build_app_services(app_settings, *, metrics: Metrics | None = None) -> AppServices:
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    return AppServices(
        storage=new_storage_backend(),
        rate_limiter=create_rate_limiter(app_settings),
        metrics=metrics_client,
    )


from pathlib import Path
from typing import Any

from snapshare.infra.storage.backends import (
    InMemoryStorageBackend,
    LocalStorageBackend,
    S3StorageBackend,
    StorageBackend,
)
from snapshare.settings import settings


def _media_base_url() -> str | None:
    return settings.public_media_base_url or settings.public_base_url


def _new_backend() -> StorageBackend:
    backend = settings.storage_backend.lower()
    if backend == "local":
        return LocalStorageBackend(Path(settings.upload_root), media_base_url=_media_base_url())
    if backend == "s3":
        if not settings.s3_bucket:
            raise RuntimeError("S3_BUCKET is required when STORAGE_BACKEND=s3")
        if not settings.s3_access_key or not settings.s3_secret_key:
            raise RuntimeError("S3_ACCESS_KEY and S3_SECRET_KEY are required for S3 storage")
        return S3StorageBackend(
            bucket=settings.s3_bucket,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            region=settings.s3_region,
            endpoint=settings.s3_endpoint,
            connect_timeout=settings.s3_connect_timeout_seconds,
            read_timeout=settings.s3_read_timeout_seconds,
            max_attempts=settings.s3_max_attempts,
            max_payload_bytes=settings.photo_max_bytes,
            public_base_url=settings.s3_public_base_url,
        )
    if backend == "memory":
        return InMemoryStorageBackend(media_base_url=_media_base_url())
    raise RuntimeError(f"Unsupported storage backend: {backend}")


def new_storage_backend() -> StorageBackend:
    return _new_backend()


def resolve_storage_backend(state: Any) -> StorageBackend:
    """Return the backend attached to the app, building one on first use.

    An explicitly assigned ``state.storage_backend`` (tests inject doubles this
    way) wins over the one held by ``state.services``.
    """

    container_state = getattr(state, "state", state)
    services = getattr(container_state, "services", None)
    config_signature = (
        settings.storage_backend.lower(),
        Path(settings.upload_root).resolve(),
        settings.s3_bucket,
        settings.s3_endpoint,
        _media_base_url(),
    )
    service_storage = getattr(services, "storage", None)
    backend: StorageBackend | None = getattr(container_state, "storage_backend", None) or service_storage
    cached_signature = getattr(container_state, "storage_backend_config", None)
    is_override = backend is not None and backend is not service_storage

    if backend is not None and (cached_signature == config_signature or is_override):
        container_state.storage_backend = backend
        container_state.storage_backend_config = config_signature
        if services is not None:
            services.storage = backend
        return backend

    backend = _new_backend()
    container_state.storage_backend = backend
    container_state.storage_backend_config = config_signature
    if services is not None:
        services.storage = backend
    return backend


__all__ = [
    "InMemoryStorageBackend",
    "LocalStorageBackend",
    "S3StorageBackend",
    "StorageBackend",
    "new_storage_backend",
    "resolve_storage_backend",
]

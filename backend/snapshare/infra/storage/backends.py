from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator
from urllib.parse import quote

import boto3
from botocore.client import Config

from snapshare.settings import settings
from snapshare.shared.circuit_breaker import CircuitBreaker

MEDIA_ROUTE_PREFIX = "/media"


@dataclass
class StoredObject:
    key: str
    size: int
    content_type: str


class StorageBackend(ABC):
    """Abstract interface for the blob store holding event photos."""

    @abstractmethod
    async def put(
        self, *, key: str, body: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        """Persist an object and return its metadata."""

    @abstractmethod
    async def read(self, *, key: str) -> bytes:
        """Return the object payload as bytes."""

    @abstractmethod
    async def delete(self, *, key: str) -> None:
        """Delete an object if it exists."""

    @abstractmethod
    async def list(self, *, prefix: str = "") -> list[str]:
        """List object keys under an optional prefix."""

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Return the stable, non-expiring URL for ``key``.

        The mapping is pure: the same key always yields the same URL and no
        network round-trip is made.
        """

    async def remove(self, *, keys: list[str]) -> None:
        for key in keys:
            await self.delete(key=key)

    def supports_direct_io(self) -> bool:
        """Whether ``/media`` should stream the object from this process."""

        return False


def _media_url(base_url: str | None, key: str) -> str:
    base = (base_url or "").rstrip("/")
    return f"{base}{MEDIA_ROUTE_PREFIX}/{quote(key.lstrip('/'), safe='/')}"


class LocalStorageBackend(StorageBackend):
    def __init__(self, root: Path, media_base_url: str | None = None) -> None:
        self.root = root
        self.media_base_url = media_base_url

    def _resolve(self, key: str, *, create_parents: bool) -> Path:
        cleaned = key.lstrip("/")
        root_resolved = self.root.resolve()
        path = (self.root / cleaned).resolve()
        if path != root_resolved and root_resolved not in path.parents:
            raise ValueError("Invalid storage key")
        if create_parents:
            path.parent.mkdir(parents=True, exist_ok=True)
        return path

    async def put(
        self, *, key: str, body: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        path = self._resolve(key, create_parents=True)
        size = 0
        try:
            with path.open("wb") as f:
                async for chunk in body:
                    size += len(chunk)
                    f.write(chunk)
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        return StoredObject(key=key, size=size, content_type=content_type)

    async def read(self, *, key: str) -> bytes:
        path = self._resolve(key, create_parents=False)
        return await asyncio.to_thread(path.read_bytes)

    async def delete(self, *, key: str) -> None:
        path = self._resolve(key, create_parents=False)
        path.unlink(missing_ok=True)

    async def list(self, *, prefix: str = "") -> list[str]:
        base = self.root / prefix
        if not base.exists():
            return []
        keys: list[str] = []
        for file in base.rglob("*"):
            if file.is_file():
                keys.append(file.relative_to(self.root).as_posix())
        return sorted(keys)

    def public_url(self, key: str) -> str:
        return _media_url(self.media_base_url, key)

    def supports_direct_io(self) -> bool:
        return True

    def path_for(self, key: str) -> Path:
        return self._resolve(key, create_parents=False)


class S3StorageBackend(StorageBackend):
    def __init__(
        self,
        *,
        bucket: str,
        access_key: str,
        secret_key: str,
        region: str | None = None,
        endpoint: str | None = None,
        connect_timeout: float = 3.0,
        read_timeout: float = 10.0,
        max_attempts: int = 4,
        max_payload_bytes: int | None = None,
        public_base_url: str | None = None,
        enable_circuit_breaker: bool = True,
        client: Any | None = None,
    ) -> None:
        if client:
            self.client = client
        else:
            session = boto3.session.Session()
            self.client = session.client(
                "s3",
                endpoint_url=endpoint,
                region_name=region,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={"mode": "standard", "max_attempts": max(1, max_attempts)},
                ),
            )
        self.bucket = bucket
        self.region = region
        self.endpoint = endpoint.rstrip("/") if endpoint else None
        self.max_payload_bytes = max_payload_bytes
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._breaker: CircuitBreaker | None = None
        if enable_circuit_breaker:
            self._breaker = CircuitBreaker(
                name="s3",
                failure_threshold=settings.s3_circuit_failure_threshold,
                recovery_time=settings.s3_circuit_recovery_seconds,
                window_seconds=settings.s3_circuit_window_seconds,
            )

    async def put(
        self, *, key: str, body: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        buffer = bytearray()
        async for chunk in body:
            buffer.extend(chunk)
            if self.max_payload_bytes and len(buffer) > self.max_payload_bytes:
                raise ValueError("Payload exceeds configured upload limit")
        data = bytes(buffer)

        def _upload() -> None:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)

        await self._run_with_circuit(lambda: asyncio.to_thread(_upload))
        return StoredObject(key=key, size=len(data), content_type=content_type)

    async def read(self, *, key: str) -> bytes:
        def _download() -> bytes:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        return await self._run_with_circuit(lambda: asyncio.to_thread(_download))

    async def delete(self, *, key: str) -> None:
        def _delete() -> None:
            self.client.delete_object(Bucket=self.bucket, Key=key)

        await self._run_with_circuit(lambda: asyncio.to_thread(_delete))

    async def remove(self, *, keys: list[str]) -> None:
        if not keys:
            return

        def _delete_many() -> None:
            self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
            )

        await self._run_with_circuit(lambda: asyncio.to_thread(_delete_many))

    async def list(self, *, prefix: str = "") -> list[str]:
        keys: list[str] = []

        def _list() -> None:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    keys.append(item["Key"])

        await self._run_with_circuit(lambda: asyncio.to_thread(_list))
        return keys

    def public_url(self, key: str) -> str:
        quoted = quote(key.lstrip("/"), safe="/")
        if self.public_base_url:
            return f"{self.public_base_url}/{quoted}"
        if self.endpoint:
            return f"{self.endpoint}/{self.bucket}/{quoted}"
        region = self.region or "us-east-1"
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{quoted}"

    async def _run_with_circuit(self, fn):
        if self._breaker is None:
            result = fn()
            if asyncio.iscoroutine(result):
                return await result
            return result
        return await self._breaker.call(fn)


class InMemoryStorageBackend(StorageBackend):
    def __init__(self, media_base_url: str | None = None) -> None:
        self.media_base_url = media_base_url
        self._objects: dict[str, tuple[bytes, str]] = {}

    async def put(
        self, *, key: str, body: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        data = bytearray()
        async for chunk in body:
            data.extend(chunk)
        payload = bytes(data)
        self._objects[key] = (payload, content_type)
        return StoredObject(key=key, size=len(payload), content_type=content_type)

    async def read(self, *, key: str) -> bytes:
        try:
            payload, _ = self._objects[key]
        except KeyError as exc:
            raise FileNotFoundError(key) from exc
        return payload

    async def delete(self, *, key: str) -> None:
        self._objects.pop(key, None)

    async def list(self, *, prefix: str = "") -> list[str]:
        return sorted(k for k in self._objects if k.startswith(prefix))

    def public_url(self, key: str) -> str:
        return _media_url(self.media_base_url, key)

    def supports_direct_io(self) -> bool:
        return True

    def content_type_for(self, key: str) -> str | None:
        entry = self._objects.get(key)
        return entry[1] if entry else None

import asyncio
import logging
import time
from collections import defaultdict, deque
from ipaddress import ip_address, ip_network
from typing import Deque, Dict, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError
from starlette.requests import Request

logger = logging.getLogger("snapshare.rate_limit")


class RateLimiter(Protocol):
    async def allow(self, key: str) -> bool: ...

    async def reset(self) -> None: ...

    async def close(self) -> None: ...


class InMemoryRateLimiter:
    """Sliding one-minute window kept per client key in process memory."""

    def __init__(self, requests_per_minute: int, cleanup_minutes: int = 10) -> None:
        self.requests_per_minute = requests_per_minute
        self.cleanup_seconds = cleanup_minutes * 60
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_prune = 0.0
        self._lock = asyncio.Lock()

    async def allow(self, key: str) -> bool:
        async with self._lock:
            now = time.monotonic()
            if now - self._last_prune >= 60:
                self._prune(now)
            hits = self._hits[key]
            while hits and hits[0] <= now - 60:
                hits.popleft()
            if len(hits) >= self.requests_per_minute:
                return False
            hits.append(now)
            return True

    async def reset(self) -> None:
        self._hits.clear()
        self._last_prune = 0.0

    async def close(self) -> None:
        return None

    def _prune(self, now: float) -> None:
        stale_before = now - self.cleanup_seconds
        for key in list(self._hits):
            hits = self._hits[key]
            if not hits or hits[-1] < stale_before:
                self._hits.pop(key, None)
        self._last_prune = now


class RedisRateLimiter:
    """Fixed one-minute buckets in Redis; degrades to memory while Redis is down."""

    def __init__(
        self,
        redis_url: str,
        requests_per_minute: int,
        cleanup_minutes: int = 10,
        redis_client: redis.Redis | None = None,
        fail_open_seconds: int = 300,
        health_probe_seconds: float = 5.0,
    ) -> None:
        self.requests_per_minute = requests_per_minute
        self.redis = redis_client or redis.from_url(redis_url, encoding="utf-8", decode_responses=False)
        self.fail_open_seconds = max(1, fail_open_seconds)
        self.health_probe_seconds = max(0.5, health_probe_seconds)
        self._fallback = InMemoryRateLimiter(requests_per_minute, cleanup_minutes=cleanup_minutes)
        self._fail_open_until = 0.0
        self._last_probe = 0.0

    async def allow(self, key: str) -> bool:
        now = time.monotonic()
        if self._fail_open_until > now:
            if now - self._last_probe < self.health_probe_seconds:
                return await self._fallback.allow(key)
            self._last_probe = now
            try:
                await self.redis.ping()
            except RedisError:
                return await self._fallback.allow(key)
            self._fail_open_until = 0.0
            logger.info("rate_limit_redis_recovered")
        bucket = f"rate-limit:{key}:{int(time.time() // 60)}"
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(bucket)
                pipe.expire(bucket, 120)
                count, _ = await pipe.execute()
        except RedisError:
            self._fail_open_until = now + self.fail_open_seconds
            self._last_probe = now
            await self._fallback.reset()
            logger.warning("rate_limit_redis_unavailable")
            return await self._fallback.allow(key)
        return int(count) <= self.requests_per_minute

    async def reset(self) -> None:
        try:
            async for key in self.redis.scan_iter(match="rate-limit:*", count=100):
                await self.redis.delete(key)
        except RedisError:
            logger.warning("rate_limit_redis_reset_failed")
        await self._fallback.reset()

    async def close(self) -> None:
        try:
            await self.redis.aclose()
        except RedisError:
            logger.warning("rate_limit_redis_close_failed")


def create_rate_limiter(app_settings) -> RateLimiter:
    if app_settings.redis_url:
        return RedisRateLimiter(
            app_settings.redis_url,
            app_settings.rate_limit_per_minute,
            cleanup_minutes=app_settings.rate_limit_cleanup_minutes,
            fail_open_seconds=app_settings.rate_limit_fail_open_seconds,
            health_probe_seconds=app_settings.rate_limit_redis_probe_seconds,
        )
    return InMemoryRateLimiter(
        app_settings.rate_limit_per_minute,
        cleanup_minutes=app_settings.rate_limit_cleanup_minutes,
    )


def resolve_client_key(
    request: Request,
    trust_proxy_headers: bool,
    trusted_proxy_ips: list[str],
    trusted_proxy_cidrs: list[str],
) -> str:
    """Return the client IP used as the rate limit key.

    ``X-Forwarded-For`` is only honoured when the direct peer is a trusted proxy,
    otherwise any client could pick its own bucket.
    """
    peer = request.client.host if request.client else "unknown"
    if not trust_proxy_headers or not _is_trusted(peer, trusted_proxy_ips, trusted_proxy_cidrs):
        return peer
    forwarded = request.headers.get("x-forwarded-for", "")
    if not forwarded or len(forwarded) > 2048:
        return peer
    candidate = forwarded.split(",")[0].strip()
    try:
        ip_address(candidate)
    except ValueError:
        return peer
    return candidate


def _is_trusted(peer: str, ips: list[str], cidrs: list[str]) -> bool:
    try:
        peer_ip = ip_address(peer)
    except ValueError:
        return False
    if peer in ips:
        return True
    for cidr in cidrs:
        try:
            if peer_ip in ip_network(cidr, strict=False):
                return True
        except ValueError:
            continue
    return False

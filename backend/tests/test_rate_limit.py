import asyncio
from types import SimpleNamespace

import pytest
from redis.exceptions import RedisError

from snapshare.infra.security import InMemoryRateLimiter, RedisRateLimiter, resolve_client_key
from snapshare.main import app


class _Pipeline:
    def __init__(self, redis: "FakeRedis") -> None:
        self.redis = redis
        self.ops: list[tuple[str, str]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def incr(self, key: str) -> None:
        self.ops.append(("incr", key))

    def expire(self, key: str, seconds: int) -> None:
        self.ops.append(("expire", key))

    async def execute(self):
        if self.redis.down:
            raise RedisError("connection refused")
        results = []
        for op, key in self.ops:
            if op == "incr":
                self.redis.counts[key] = self.redis.counts.get(key, 0) + 1
                results.append(self.redis.counts[key])
            else:
                results.append(True)
        return results


class FakeRedis:
    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.down = False

    def pipeline(self, transaction: bool = True) -> _Pipeline:
        return _Pipeline(self)

    async def ping(self) -> bool:
        if self.down:
            raise RedisError("connection refused")
        return True

    async def scan_iter(self, match: str | None = None, count: int | None = None):
        for key in list(self.counts):
            yield key

    async def delete(self, key: str) -> None:
        self.counts.pop(key, None)

    async def aclose(self) -> None:
        return None


def test_in_memory_limiter_blocks_after_limit():
    limiter = InMemoryRateLimiter(requests_per_minute=2)

    async def scenario():
        assert await limiter.allow("a")
        assert await limiter.allow("a")
        assert not await limiter.allow("a")
        assert await limiter.allow("b")
        await limiter.reset()
        assert await limiter.allow("a")

    asyncio.run(scenario())


def test_redis_limiter_counts_and_falls_back():
    redis = FakeRedis()
    limiter = RedisRateLimiter("redis://unused", requests_per_minute=1, redis_client=redis)

    async def scenario():
        assert await limiter.allow("client")
        assert not await limiter.allow("client")
        redis.down = True
        assert await limiter.allow("other")
        assert not await limiter.allow("other")
        await limiter.reset()
        await limiter.close()

    asyncio.run(scenario())


def _request(peer: str, forwarded: str | None = None):
    headers = {"x-forwarded-for": forwarded} if forwarded else {}
    return SimpleNamespace(client=SimpleNamespace(host=peer), headers=headers)


@pytest.mark.parametrize(
    ("peer", "forwarded", "trust", "expected"),
    [
        ("10.0.0.5", "203.0.113.9", False, "10.0.0.5"),
        ("10.0.0.5", "203.0.113.9, 10.0.0.5", True, "203.0.113.9"),
        ("198.51.100.7", "203.0.113.9", True, "198.51.100.7"),
        ("10.0.0.5", "not-an-ip", True, "10.0.0.5"),
    ],
)
def test_resolve_client_key_trusts_only_known_proxies(peer, forwarded, trust, expected):
    key = resolve_client_key(
        _request(peer, forwarded),
        trust_proxy_headers=trust,
        trusted_proxy_ips=[],
        trusted_proxy_cidrs=["10.0.0.0/8"],
    )
    assert key == expected


def test_rate_limit_middleware_returns_problem_429(client, monkeypatch):
    limiter = app.state.rate_limiter
    monkeypatch.setattr(limiter, "requests_per_minute", 2)

    statuses = [client.get("/v1/public/pricing").status_code for _ in range(3)]
    assert statuses == [200, 200, 429]

    blocked = client.get("/v1/public/pricing")
    assert blocked.headers["content-type"].startswith("application/problem+json")
    assert blocked.json()["title"] == "Too Many Requests"

    assert client.get("/healthz").status_code == 200

import asyncio
import inspect
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("AUTH_COOKIE_SECURE", "false")
os.environ.setdefault("PASSWORD_HASH_ARGON2_TIME_COST", "1")
os.environ.setdefault("PASSWORD_HASH_ARGON2_MEMORY_COST", "8192")
os.environ.setdefault("PASSWORD_HASH_ARGON2_PARALLELISM", "1")


def ensure_event_loop() -> asyncio.AbstractEventLoop:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop


ensure_event_loop()

import anyio
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from snapshare.infra import models  # noqa: F401
from snapshare.infra.db import Base, get_db_session
from snapshare.infra.storage.backends import InMemoryStorageBackend
from snapshare.main import app
from snapshare.settings import settings


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def test_engine():
    db_path = Path("test.db")
    if db_path.exists():
        db_path.unlink()
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test.db",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    original = {
        name: getattr(settings, name)
        for name in (
            "testing",
            "app_env",
            "metrics_enabled",
            "metrics_token",
            "photo_max_bytes",
            "photo_allowed_mimes_raw",
            "photo_auto_approve",
            "public_base_url",
            "public_media_base_url",
            "rate_limit_per_minute",
            "trust_proxy_headers",
            "trusted_proxy_ips_raw",
            "trusted_proxy_cidrs_raw",
            "qr_print_delay_ms",
            "gallery_refresh_delay_ms",
        )
    }
    yield
    for name, value in original.items():
        setattr(settings, name, value)


@pytest.fixture(autouse=True)
def enable_test_mode():
    settings.testing = True
    settings.app_env = "dev"
    app.state.storage_backend = InMemoryStorageBackend()
    yield


@pytest.fixture()
def storage():
    return app.state.storage_backend


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    rate_limiter = getattr(app.state, "rate_limiter", None)
    reset = getattr(rate_limiter, "reset", None) if rate_limiter else None
    if reset:
        if inspect.iscoroutinefunction(reset):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(reset())
            else:
                anyio.from_thread.run(reset)
        else:
            reset()
    yield


@pytest.fixture()
def client(async_session_maker):
    ensure_event_loop()

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory


@pytest.fixture()
def client_no_raise(async_session_maker):
    """Test client that returns HTTP responses instead of raising server exceptions."""

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory


def _register(test_client: TestClient, email: str, password: str = "secret-pass") -> dict[str, str]:
    response = test_client.post("/v1/auth/register", json={"email": email, "password": password})
    assert response.status_code == 201, response.text
    test_client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture()
def organizer_headers(client):
    return _register(client, "owner@example.com")


@pytest.fixture()
def other_organizer_headers(client):
    return _register(client, "intruder@example.com")


@pytest.fixture()
def make_event(client, organizer_headers):
    def _make_event(headers: dict[str, str] | None = None, **overrides) -> dict:
        payload = {
            "title": "Summer Wedding",
            "description": "Anna & Ben",
            "event_date": "2025-06-14T15:00:00Z",
            "location": "Lakeside Hall",
        }
        payload.update(overrides)
        response = client.post("/v1/events", json=payload, headers=headers or organizer_headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _make_event

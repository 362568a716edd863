import asyncio
import logging
import time
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from snapshare.infra.storage import resolve_storage_backend

router = APIRouter()
logger = logging.getLogger(__name__)

_DB_CHECK_TIMEOUT_SECONDS = 2.0
_BACKEND_ROOT = Path(__file__).resolve().parents[2]
_HEADS: dict[str, Any] = {"loaded": False, "heads": None}


def _expected_heads() -> list[str] | None:
    if _HEADS["loaded"]:
        return _HEADS["heads"]
    try:
        cfg = Config(str(_BACKEND_ROOT / "alembic.ini"))
        cfg.set_main_option("script_location", str(_BACKEND_ROOT / "alembic"))
        heads = list(ScriptDirectory.from_config(cfg).get_heads())
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "migrations_check_skipped_no_alembic_files",
            extra={"extra": {"error_type": type(exc).__name__}},
        )
        heads = None
    _HEADS.update({"loaded": True, "heads": heads})
    return heads


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


async def _db_check(request: Request) -> tuple[bool, dict[str, Any]]:
    session_factory = getattr(request.app.state, "db_session_factory", None)
    if session_factory is None:
        return False, {"message": "database session factory unavailable"}

    async def _ping() -> str | None:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
            try:
                result = await session.execute(text("SELECT version_num FROM alembic_version"))
            except SQLAlchemyError:
                return None
            row = result.first()
            return row[0] if row else None

    try:
        current_version = await asyncio.wait_for(_ping(), timeout=_DB_CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        return False, {"message": "database check timed out", "timeout_seconds": _DB_CHECK_TIMEOUT_SECONDS}
    except Exception as exc:  # noqa: BLE001
        logger.debug("database_check_failed", exc_info=exc)
        return False, {"message": "database check failed", "error": exc.__class__.__name__}

    heads = _expected_heads()
    if heads is None:
        return True, {"message": "database reachable", "migrations_check": "skipped"}
    migrations_current = current_version in heads
    return migrations_current, {
        "message": "database reachable" if migrations_current else "migrations pending",
        "current_version": current_version,
        "expected_heads": heads,
    }


async def _storage_check(request: Request) -> tuple[bool, dict[str, Any]]:
    backend = resolve_storage_backend(request.app.state)
    return True, {"backend": type(backend).__name__}


async def _run_check(name: str, check_fn) -> dict[str, Any]:  # noqa: ANN001
    start = time.perf_counter()
    try:
        ok, detail = await check_fn()
    except Exception as exc:  # noqa: BLE001
        logger.exception("readiness_check_failed", extra={"extra": {"check": name}})
        ok, detail = False, {"message": "unexpected error", "error": type(exc).__name__}
    elapsed_ms = (time.perf_counter() - start) * 1000
    return {"name": name, "ok": bool(ok), "ms": round(elapsed_ms, 2), "detail": detail}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    checks = [
        await _run_check("db", lambda: _db_check(request)),
        await _run_check("storage", lambda: _storage_check(request)),
    ]
    overall_ok = all(check["ok"] for check in checks)
    return JSONResponse(status_code=200 if overall_ok else 503, content={"ok": overall_ok, "checks": checks})

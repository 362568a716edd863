import logging
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Iterable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.middleware.base import BaseHTTPMiddleware

from snapshare.api.problem_details import (
    PROBLEM_TYPE_DOMAIN,
    PROBLEM_TYPE_RATE_LIMIT,
    PROBLEM_TYPE_SERVER,
    PROBLEM_TYPE_VALIDATION,
    problem_details,
    resolve_problem_type,
)
from snapshare.api.routes_auth import router as auth_router
from snapshare.api.routes_dashboard import router as dashboard_router
from snapshare.api.routes_event_photos import router as event_photos_router
from snapshare.api.routes_events import router as events_router
from snapshare.api.routes_guest import router as guest_router
from snapshare.api.routes_health import router as health_router
from snapshare.api.routes_media import router as media_router
from snapshare.api.routes_public import router as public_router
from snapshare.domain.errors import DomainError
from snapshare.infra import models  # noqa: F401
from snapshare.infra.db import dispose_engine, get_session_factory
from snapshare.infra.logging import clear_log_context, configure_logging, update_log_context
from snapshare.infra.metrics import configure_metrics
from snapshare.infra.security import RateLimiter, resolve_client_key
from snapshare.services import build_app_services
from snapshare.settings import settings

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"


def _bucket_for_path(path: str) -> str:
    normalized = path or ""
    if normalized.startswith("/v1/auth"):
        return "auth"
    if normalized.startswith("/v1/public"):
        return "public"
    if normalized.startswith("/v1/events"):
        return "events"
    if normalized.startswith("/v1/dashboard"):
        return "dashboard"
    if normalized.startswith(("/g/", "/guest/")):
        return "guest"
    if normalized.startswith("/media/"):
        return "media"
    return "other"


def _resolve_log_identity(request: Request) -> dict[str, str]:
    organizer_id = getattr(request.state, "organizer_id", None)
    if organizer_id:
        return {"organizer_id": str(organizer_id), "auth_method": "session"}
    return {}


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_logger = logging.getLogger("snapshare.request")
        start = time.time()
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        request.state.request_id = request_id
        update_log_context(request_id=request_id, method=request.method, path=request.url.path)

        response = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            latency_ms = int((time.time() - start) * 1000)
            update_log_context(
                status_code=status_code, latency_ms=latency_ms, **_resolve_log_identity(request)
            )
            request_logger.info("request", extra={"latency_ms": latency_ms})
            if response is not None:
                response.headers.setdefault("X-Request-ID", request_id)
            clear_log_context()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault(
            "Content-Security-Policy",
            "default-src 'self'; img-src 'self' data: https:; style-src 'self' 'unsafe-inline'; script-src 'self' 'unsafe-inline'",
        )
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, metrics_client) -> None:
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            route_label = getattr(route, "path", "unmatched")
            self.metrics.record_http_latency(
                request.method, route_label, status_code, time.perf_counter() - start
            )
            self.metrics.record_http_request(request.method, route_label, status_code)
            if status_code >= 500:
                self.metrics.record_http_5xx(request.method, route_label)


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, limiter: RateLimiter, app_settings, metrics_client) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.app_settings = app_settings
        self.metrics = metrics_client
        self.exempt_paths = {"/healthz", "/readyz", "/metrics"}

    async def dispatch(self, request: Request, call_next: Callable):
        if request.method == "OPTIONS":
            return await call_next(request)
        path = request.url.path
        if (path.rstrip("/") or "/") in self.exempt_paths or path.startswith("/static/"):
            return await call_next(request)

        client = resolve_client_key(
            request,
            trust_proxy_headers=self.app_settings.trust_proxy_headers,
            trusted_proxy_ips=self.app_settings.trusted_proxy_ips,
            trusted_proxy_cidrs=self.app_settings.trusted_proxy_cidrs,
        )
        if not await self.limiter.allow(client):
            bucket = _bucket_for_path(path)
            self.metrics.record_http_429(bucket)
            logger.warning(
                "rate_limit_blocked",
                extra={
                    "extra": {
                        "request_id": getattr(request.state, "request_id", None),
                        "bucket": bucket,
                        "limit_per_minute": self.app_settings.rate_limit_per_minute,
                    }
                },
            )
            return problem_details(
                request=request,
                status=429,
                title="Too Many Requests",
                detail="Rate limit exceeded",
                type_=PROBLEM_TYPE_RATE_LIMIT,
            )
        return await call_next(request)


def _resolve_cors_origins(app_settings) -> Iterable[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    if app_settings.strict_cors:
        return []
    if app_settings.app_env == "dev":
        return ["http://localhost:3000"]
    return []


def create_app(app_settings) -> FastAPI:
    configure_logging()
    metrics_client = configure_metrics(app_settings.metrics_enabled)
    services = build_app_services(app_settings, metrics=metrics_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state_services = getattr(app.state, "services", None) or services
        app.state.services = state_services
        app.state.rate_limiter = getattr(app.state, "rate_limiter", None) or state_services.rate_limiter
        app.state.metrics = getattr(app.state, "metrics", None) or state_services.metrics
        app.state.storage_backend = getattr(app.state, "storage_backend", None) or state_services.storage
        app.state.app_settings = getattr(app.state, "app_settings", app_settings)
        app.state.db_session_factory = getattr(app.state, "db_session_factory", None) or get_session_factory()
        yield
        await app.state.rate_limiter.close()
        await dispose_engine()

    app = FastAPI(title="SnapShare", version="1.0.0", lifespan=lifespan)

    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware, metrics_client=metrics_client)
    app.add_middleware(
        RateLimitMiddleware,
        limiter=services.rate_limiter,
        app_settings=app_settings,
        metrics_client=metrics_client,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(_resolve_cors_origins(app_settings)),
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = error.get("loc", [])
            field = ".".join(str(part) for part in loc if part not in {"body", "query", "path"}) or "body"
            errors.append({"field": field, "message": error.get("msg", "Invalid value")})
        return problem_details(
            request=request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            errors=errors,
            type_=PROBLEM_TYPE_VALIDATION,
        )

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError):
        return problem_details(
            request=request,
            status=400,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors or [],
            type_=exc.type or PROBLEM_TYPE_DOMAIN,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                extra={"extra": {"status_code": exc.status_code, "detail": str(exc.detail)}},
            )
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return problem_details(
            request=request,
            status=exc.status_code,
            title=None,
            detail=detail,
            type_=resolve_problem_type(exc.status_code),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", None)
        error_type = type(exc).__name__
        update_log_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=500,
            error_type=error_type,
            **_resolve_log_identity(request),
        )
        logger.exception(
            "unhandled_exception",
            extra={"request_id": request_id, "path": request.url.path, "error_type": error_type},
        )
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail="Unexpected error",
            type_=PROBLEM_TYPE_SERVER,
        )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(dashboard_router)
    app.include_router(events_router)
    app.include_router(event_photos_router)
    app.include_router(public_router)
    app.include_router(guest_router)
    app.include_router(media_router)
    if app_settings.metrics_enabled:
        from snapshare.api.routes_metrics import router as metrics_router

        app.include_router(metrics_router)
    return app


app = create_app(settings)

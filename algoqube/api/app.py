from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from ..config import Config
from ..core.database import Base, engine, get_db
from ..core.logging import configure_logging, get_logger
from ..services.origin_resolver import OriginResolver
from .cors import DynamicCORSMiddleware
from .routers import admin, analytics, chatboxes, conversations, leads, notifications, users
from .security import client_ip

logger = get_logger(__name__)

EMBED_PATH_PREFIXES = ("/embed", "/chat-widget", "/widget")

DEFAULT_CSP = (
    "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: https:; font-src 'self' data:;"
)
EMBED_CSP = (
    "default-src 'self' 'unsafe-inline' 'unsafe-eval' data: blob:; "
    "script-src 'self' 'unsafe-inline' 'unsafe-eval' https:; style-src 'self' 'unsafe-inline' https:; "
    "img-src 'self' data: blob: https:; font-src 'self' data: https:; connect-src 'self' https:; "
    "frame-src 'self' https:;"
)

_started_at = time.monotonic()


def _is_embed_path(path: str) -> bool:
    return path.startswith(EMBED_PATH_PREFIXES) or "embed.js" in path or "widget.js" in path


def _init_db() -> None:
    Base.metadata.create_all(bind=engine)


def create_app(origin_resolver: Optional[OriginResolver] = None) -> FastAPI:
    configure_logging()
    Config.validate_security()

    resolver = origin_resolver or OriginResolver(ttl_seconds=Config.CORS_CACHE_TTL_SECONDS)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        try:
            origins = resolver.get_allowed_origins()
            logger.info("CORS allowlist warmed up.", extra={"count": len(origins)})
        except Exception as exc:  # pragma: no cover - startup must not fail on CORS warmup
            logger.warning("Unable to warm up CORS allowlist.", extra={"error": str(exc)})
        yield

    app = FastAPI(
        title="Algoqube Chatbox API",
        version=Config.VERSION,
        lifespan=lifespan,
    )
    app.state.origin_resolver = resolver
    _init_db()

    # Added first so it runs innermost, after logging and security headers.
    app.add_middleware(DynamicCORSMiddleware, resolver=resolver)

    @app.middleware("http")
    async def observe_api_requests(request: Request, call_next):
        started_at = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            latency_ms = round((time.perf_counter() - started_at) * 1000, 2)
            logger.exception(
                "API request failed with unhandled exception.",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "latency_ms": latency_ms,
                    "client_ip": client_ip(request),
                },
            )
            raise

        if request.url.path.startswith("/api"):
            logger.info(
                "api_request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "latency_ms": round((time.perf_counter() - started_at) * 1000, 2),
                    "client_ip": client_ip(request),
                },
            )
        return response

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        embed = _is_embed_path(request.url.path)
        if not embed:
            response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = EMBED_CSP if embed else DEFAULT_CSP
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"error": "Route not found", "path": request.url.path, "method": request.method},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Global error handler.",
            exc_info=exc,
            extra={"method": request.method, "path": request.url.path},
        )
        message = "Internal Server Error" if Config.is_production() else str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": message},
        )

    @app.get("/health")
    def healthcheck(db: Session = Depends(get_db)) -> dict[str, Any]:
        try:
            db.execute(text("SELECT 1"))
            db_ok = True
        except SQLAlchemyError as exc:
            logger.warning("Healthcheck DB query failed.", extra={"error": str(exc)})
            db_ok = False
        return {
            "status": "OK" if db_ok else "DEGRADED",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - _started_at, 3),
            "environment": Config.environment(),
            "version": Config.VERSION,
        }

    app.include_router(users.router)
    app.include_router(chatboxes.router)
    app.include_router(leads.router)
    app.include_router(notifications.router)
    app.include_router(analytics.router)
    app.include_router(conversations.router)
    app.include_router(admin.router)

    return app


app = create_app()

from __future__ import annotations

from fastapi import status
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..config import Config
from ..core.logging import get_logger
from ..services.origin_resolver import OriginResolver

logger = get_logger(__name__)

REJECTED_ORIGIN_BODY = {"error": "Origin not allowed by CORS policy"}


def allowed_origin_headers(origin: str) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": ", ".join(Config.CORS_ALLOWED_METHODS),
        "Access-Control-Allow-Headers": ", ".join(Config.CORS_ALLOWED_HEADERS),
        "Vary": "Origin",
    }


def fallback_headers() -> dict[str, str]:
    # Wildcard origin, so no credentials.
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": ", ".join(Config.CORS_ALLOWED_METHODS),
        "Access-Control-Allow-Headers": ", ".join(Config.CORS_ALLOWED_HEADERS),
    }


class DynamicCORSMiddleware(BaseHTTPMiddleware):
    """Applies the origin allowlist of an OriginResolver to every request.

    Requests without an Origin header pass through untouched. Allowed origins
    are echoed back with credentials enabled and preflights are answered here.
    Rejected origins get a 403 and never reach the routers. If the resolver
    itself blows up, the response degrades to a wildcard, credential-less
    header set instead of failing the request.
    """

    def __init__(self, app, resolver: OriginResolver) -> None:
        super().__init__(app)
        self.resolver = resolver

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin")
        if not origin:
            return await call_next(request)

        try:
            allowed = await run_in_threadpool(self.resolver.is_origin_allowed, origin)
        except Exception as exc:
            logger.error(
                "CORS origin resolution failed, falling back to permissive headers.",
                exc_info=True,
                extra={"origin": origin, "error": str(exc)},
            )
            response = await call_next(request)
            response.headers.update(fallback_headers())
            return response

        if not allowed:
            logger.warning(
                "CORS blocked origin.",
                extra={"origin": origin, "method": request.method, "path": request.url.path},
            )
            return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=REJECTED_ORIGIN_BODY)

        headers = allowed_origin_headers(origin)
        if request.method == "OPTIONS":
            return Response(status_code=status.HTTP_200_OK, headers=headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response

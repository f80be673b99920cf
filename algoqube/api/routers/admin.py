from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from starlette.requests import Request

from ...core.logging import get_logger
from ...services.origin_resolver import OriginResolver

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def get_origin_resolver(request: Request) -> OriginResolver:
    return request.app.state.origin_resolver


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.post("/refresh-cors")
def refresh_cors(resolver: OriginResolver = Depends(get_origin_resolver)):
    try:
        resolver.refresh()
    except Exception as exc:
        logger.exception("Error refreshing CORS cache.", extra={"error": str(exc)})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Failed to refresh CORS cache"},
        )
    return {
        "success": True,
        "message": "CORS cache refreshed successfully",
        "timestamp": _timestamp(),
    }


@router.get("/cors-origins")
def get_cors_origins(resolver: OriginResolver = Depends(get_origin_resolver)):
    try:
        origins = resolver.get_allowed_origins()
    except Exception as exc:
        logger.exception("Error getting CORS origins.", extra={"error": str(exc)})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Failed to get CORS origins"},
        )
    return {
        "success": True,
        "origins": origins,
        "count": len(origins),
        "timestamp": _timestamp(),
    }

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
import time
from datetime import datetime, timedelta
from typing import Any

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.responses import Response
from sqlalchemy.orm import Session
from starlette.requests import Request

from ..config import Config
from ..core.database import get_db
from ..core.db_models import DBUser

TOKEN_COOKIE_NAME = "token"
JWT_ALGORITHM = "HS256"

PASSWORD_MIN_LENGTH = 8
# bcrypt ignores input past 72 bytes
PASSWORD_MAX_BYTES = 72
_SPECIAL_CHARS_RE = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")


class WeakPasswordError(ValueError):
    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


def validate_password_strength(password: str) -> list[str]:
    errors: list[str] = []
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if not re.search(r"[A-Z]", password or ""):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password or ""):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password or ""):
        errors.append("Password must contain at least one number")
    if not _SPECIAL_CHARS_RE.search(password or ""):
        errors.append("Password must contain at least one special character")
    if len((password or "").encode("utf-8")) > PASSWORD_MAX_BYTES:
        errors.append(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long")
    return errors


def hash_password(password: str) -> str:
    errors = validate_password_strength(password)
    if errors:
        raise WeakPasswordError(errors)
    salt = bcrypt.gensalt(rounds=Config.get_bcrypt_rounds())
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash, or a password bcrypt refuses
        return False


def _base64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _base64url_decode(raw: str) -> bytes:
    padding = "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode(raw + padding)


def encode_jwt(payload: dict[str, Any]) -> str:
    header = {"alg": JWT_ALGORITHM, "typ": "JWT"}
    signing_input = (
        f"{_base64url_encode(json.dumps(header, separators=(',', ':')).encode('utf-8'))}."
        f"{_base64url_encode(json.dumps(payload, separators=(',', ':')).encode('utf-8'))}"
    )
    signature = hmac.new(
        Config.get_jwt_secret().encode("utf-8"),
        signing_input.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return f"{signing_input}.{_base64url_encode(signature)}"


def decode_jwt(token: str) -> dict[str, Any]:
    invalid = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized: Invalid or expired token",
    )
    try:
        header_b64, payload_b64, signature_b64 = token.split(".")
        provided_signature = _base64url_decode(signature_b64)
    except ValueError as exc:
        raise invalid from exc

    signing_input = f"{header_b64}.{payload_b64}".encode("ascii", errors="replace")
    expected_signature = hmac.new(
        Config.get_jwt_secret().encode("utf-8"),
        signing_input,
        hashlib.sha256,
    ).digest()
    if not hmac.compare_digest(expected_signature, provided_signature):
        raise invalid

    try:
        payload = json.loads(_base64url_decode(payload_b64).decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise invalid from exc

    exp = payload.get("exp") if isinstance(payload, dict) else None
    if not isinstance(exp, int) or exp <= int(time.time()):
        raise invalid
    return payload


def create_user_token(user: DBUser) -> tuple[str, datetime]:
    expires_at = datetime.utcnow() + timedelta(days=Config.get_jwt_ttl_days())
    payload = {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "iat": int(time.time()),
        "exp": int(expires_at.timestamp()),
    }
    return encode_jwt(payload), expires_at


def set_auth_cookie(response: Response, token: str, expires_at: datetime) -> None:
    response.set_cookie(
        TOKEN_COOKIE_NAME,
        token,
        httponly=True,
        secure=Config.should_use_secure_cookies(),
        samesite="lax",
        max_age=max(1, int((expires_at - datetime.utcnow()).total_seconds())),
        path="/",
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(TOKEN_COOKIE_NAME, path="/")


def _extract_bearer(request: Request) -> str | None:
    raw_auth = request.headers.get("authorization")
    if not raw_auth or not raw_auth.lower().startswith("bearer "):
        return None
    value = raw_auth[len("bearer ") :].strip()
    return value or None


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def client_meta(request: Request) -> dict[str, Any]:
    return {
        "timestamp": datetime.utcnow().isoformat(),
        "ip": client_ip(request),
        "device": request.headers.get("user-agent") or "Unknown",
        "location": "Unknown",
    }


def get_token_payload(request: Request) -> dict[str, Any]:
    token = request.cookies.get(TOKEN_COOKIE_NAME) or _extract_bearer(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: No token provided",
        )
    return decode_jwt(token)


def require_user(request: Request, db: Session = Depends(get_db)) -> DBUser:
    payload = get_token_payload(request)
    user = db.query(DBUser).filter(DBUser.id == payload.get("id")).first()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid or expired token",
        )
    return user

from __future__ import annotations

import time

import pytest
from fastapi import HTTPException

from algoqube.api.security import (
    WeakPasswordError,
    decode_jwt,
    encode_jwt,
    hash_password,
    validate_password_strength,
    verify_password,
)
from algoqube.services.plans import (
    get_plan_by_id,
    get_plan_by_name,
    get_plan_token_limit,
    initialize_user_tokens,
)


def test_plan_lookup():
    assert get_plan_by_id("professional").token_limit == 50000
    assert get_plan_by_id("missing") is None
    assert get_plan_by_name("Starter").id == "starter"
    assert get_plan_by_id("enterprise").is_unlimited


def test_unknown_plan_defaults_to_free_limit():
    assert get_plan_token_limit("missing") == 1000
    assert initialize_user_tokens("starter") == {"allocated": 5000, "used": 0, "remaining": 5000}
    assert initialize_user_tokens("enterprise") == {"allocated": 0, "used": 0, "remaining": 0}


def test_password_strength_rules():
    assert validate_password_strength("StrongPass123!") == []
    errors = validate_password_strength("short")
    assert len(errors) == 4
    with pytest.raises(WeakPasswordError):
        hash_password("alllowercase1!")


def test_password_hash_roundtrip(monkeypatch):
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    hashed = hash_password("StrongPass123!")
    assert hashed.startswith("$2b$04$")
    assert verify_password("StrongPass123!", hashed)
    assert not verify_password("StrongPass123?", hashed)
    assert not verify_password("", hashed)


@pytest.mark.parametrize(
    "stored",
    ["garbage", "pbkdf2_sha256$not-a-number$salt$abcd", "$2b$04$short"],
)
def test_malformed_stored_hash_is_rejected(stored):
    assert verify_password("StrongPass123!", stored) is False


def test_overlong_password_is_weak():
    errors = validate_password_strength("Aa1!" + "x" * 80)
    assert errors == ["Password must be at most 72 bytes long"]


def test_jwt_rejects_tampering_and_expiry(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "unit-secret")
    token = encode_jwt({"id": "u1", "exp": int(time.time()) + 60})
    assert decode_jwt(token)["id"] == "u1"

    header, payload, signature = token.split(".")
    with pytest.raises(HTTPException) as tampered:
        decode_jwt(f"{header}.{payload}x.{signature}")
    assert tampered.value.status_code == 401

    expired = encode_jwt({"id": "u1", "exp": int(time.time()) - 1})
    with pytest.raises(HTTPException):
        decode_jwt(expired)

    monkeypatch.setenv("JWT_SECRET", "rotated-secret")
    with pytest.raises(HTTPException):
        decode_jwt(token)

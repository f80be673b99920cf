from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.requests import Request

from ...core.database import get_db
from ...core.db_models import DBChatbox, DBLead, DBNotification, DBUser
from ...core.logging import get_logger
from ...core.models import (
    LoginStatus,
    NotificationPreferencesRequest,
    PasswordChangeRequest,
    ProfileUpdateRequest,
    SelectPlanRequest,
    UseTokensRequest,
    UserLoginRequest,
    UserRegisterRequest,
)
from ...services import notification_service
from ...services.plans import (
    DEFAULT_PLAN_ID,
    get_plan_by_id,
    get_plan_by_name,
    initialize_user_tokens,
    serialize_plans,
)
from ..security import (
    WeakPasswordError,
    clear_auth_cookie,
    client_meta,
    create_user_token,
    hash_password,
    require_user,
    set_auth_cookie,
    verify_password,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

MAX_LOGIN_HISTORY = 50


def _serialize_user(user: DBUser) -> dict[str, Any]:
    return {
        "_id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
        "plan": {
            "name": user.plan_name,
            "expiresOn": user.plan_expires_on.isoformat() if user.plan_expires_on else None,
        },
    }


def _serialize_tokens(user: DBUser) -> dict[str, Any]:
    return {
        "allocated": user.tokens_allocated,
        "used": user.tokens_used,
        "remaining": user.tokens_remaining,
    }


def _serialize_settings(user: DBUser) -> dict[str, Any]:
    return {
        **_serialize_user(user),
        "avatar": user.avatar,
        "address": user.address,
        "accountStatus": user.account_status,
        "emailVerified": bool(user.email_verified),
        "phoneVerified": bool(user.phone_verified),
        "locale": user.locale,
        "timezone": user.timezone,
        "notifications": dict(user.notifications_json or {}),
        "isActive": bool(user.is_active),
    }


def _record_login(user: DBUser, meta: dict[str, Any], login_status: LoginStatus) -> None:
    entry = {**meta, "status": login_status.value}
    history = list(user.login_history_json or [])
    history.append(entry)
    # Reassign so SQLAlchemy notices the JSON change
    user.login_history_json = history[-MAX_LOGIN_HISTORY:]
    if login_status == LoginStatus.SUCCESS:
        user.last_login_json = entry


def _user_plan_id(user: DBUser) -> str:
    plan = get_plan_by_name(user.plan_name)
    return plan.id if plan else DEFAULT_PLAN_ID


def _commit(db: Session, action: str, **context: Any) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(f"Failed to {action}.", extra={"error": str(exc), **context})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Unable to {action}.",
        ) from exc


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register_user(payload: UserRegisterRequest, request: Request, db: Session = Depends(get_db)):
    email = payload.email.strip().lower()
    if db.query(DBUser).filter(DBUser.email == email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already exists")

    try:
        hashed = hash_password(payload.password)
    except WeakPasswordError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.errors) from exc

    tokens = initialize_user_tokens(DEFAULT_PLAN_ID)
    user = DBUser(
        name=payload.name,
        email=email,
        phone=payload.phone,
        password_hash=hashed,
        plan_name=get_plan_by_id(DEFAULT_PLAN_ID).name,
        tokens_allocated=tokens["allocated"],
        tokens_used=tokens["used"],
        tokens_remaining=tokens["remaining"],
    )
    _record_login(user, client_meta(request), LoginStatus.SUCCESS)
    db.add(user)
    _commit(db, "register user", email=email)
    db.refresh(user)
    logger.info("User registered.", extra={"user_id": user.id})
    return {"message": "User registered successfully", "user": _serialize_user(user)}


@router.post("/login")
def login_user(payload: UserLoginRequest, request: Request, db: Session = Depends(get_db)):
    email = payload.email.strip().lower()
    user = db.query(DBUser).filter(DBUser.email == email).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email or password")

    meta = client_meta(request)
    if not verify_password(payload.password, user.password_hash):
        _record_login(user, meta, LoginStatus.FAILED)
        _commit(db, "record failed login", user_id=user.id)
        logger.warning("Failed login attempt.", extra={"user_id": user.id, "ip": meta["ip"]})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")

    _record_login(user, meta, LoginStatus.SUCCESS)
    _commit(db, "record login", user_id=user.id)

    token, expires_at = create_user_token(user)
    response = JSONResponse(
        {"message": "Login successful", "user": _serialize_user(user), "token": token}
    )
    set_auth_cookie(response, token, expires_at)
    return response


@router.get("/plans")
def get_available_plans():
    return {"plans": serialize_plans()}


@router.get("/me")
def get_current_user(user: DBUser = Depends(require_user)):
    return {"user": _serialize_user(user)}


@router.post("/logout")
def logout_user(_: DBUser = Depends(require_user)):
    response = JSONResponse({"message": "Logged out successfully"})
    clear_auth_cookie(response)
    return response


@router.get("/activity")
def get_user_activity(user: DBUser = Depends(require_user)):
    history = list(user.login_history_json or [])
    return {
        "lastLogin": user.last_login_json or None,
        "loginHistory": list(reversed(history)),
    }


@router.get("/settings")
def get_settings(user: DBUser = Depends(require_user)):
    return {"settings": _serialize_settings(user)}


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(user, key, value)
    _commit(db, "update profile", user_id=user.id)
    db.refresh(user)
    return {"message": "Profile updated successfully", "user": _serialize_settings(user)}


@router.put("/password")
def change_password(
    payload: PasswordChangeRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    try:
        user.password_hash = hash_password(payload.new_password)
    except WeakPasswordError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.errors) from exc
    _commit(db, "change password", user_id=user.id)
    return {"message": "Password updated successfully"}


@router.put("/notifications")
def update_notifications(
    payload: NotificationPreferencesRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    preferences = dict(user.notifications_json or {})
    preferences.update(payload.model_dump(exclude_unset=True, exclude_none=True))
    user.notifications_json = preferences
    _commit(db, "update notification preferences", user_id=user.id)
    return {"message": "Notification preferences updated", "notifications": preferences}


@router.put("/deactivate")
def deactivate_account(user: DBUser = Depends(require_user), db: Session = Depends(get_db)):
    user.is_active = False
    _commit(db, "deactivate account", user_id=user.id)
    response = JSONResponse({"message": "Account deactivated successfully"})
    clear_auth_cookie(response)
    return response


@router.delete("/account")
def delete_account(user: DBUser = Depends(require_user), db: Session = Depends(get_db)):
    user_id = user.id
    db.query(DBNotification).filter(DBNotification.user_id == user_id).delete(synchronize_session=False)
    chatbox_ids = [row[0] for row in db.query(DBChatbox.id).filter(DBChatbox.created_by == user_id).all()]
    if chatbox_ids:
        db.query(DBLead).filter(DBLead.chatbox_id.in_(chatbox_ids)).delete(synchronize_session=False)
    db.delete(user)
    _commit(db, "delete account", user_id=user_id)
    logger.info("User account deleted.", extra={"user_id": user_id})
    response = JSONResponse({"message": "Account deleted successfully"})
    clear_auth_cookie(response)
    return response


@router.post("/select-plan")
def select_plan(
    payload: SelectPlanRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    plan = get_plan_by_id(payload.plan_id)
    if not plan:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid plan selected")

    tokens = initialize_user_tokens(plan.id)
    user.plan_name = plan.name
    user.tokens_allocated = tokens["allocated"]
    user.tokens_used = tokens["used"]
    user.tokens_remaining = tokens["remaining"]
    _commit(db, "select plan", user_id=user.id, plan_id=plan.id)
    db.refresh(user)

    notification_service.notify(
        db,
        user.id,
        "Plan updated",
        f"You are now on the {plan.name} plan.",
        type="success",
        data={"planId": plan.id},
    )
    return {
        "message": f"Plan updated to {plan.name}",
        "user": _serialize_user(user),
        "tokens": _serialize_tokens(user),
    }


@router.get("/token-usage")
def get_token_usage(user: DBUser = Depends(require_user)):
    plan = get_plan_by_id(_user_plan_id(user))
    return {
        "plan": user.plan_name,
        "unlimited": plan.is_unlimited,
        "tokens": _serialize_tokens(user),
    }


@router.post("/use-tokens")
def use_tokens(
    payload: UseTokensRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    plan = get_plan_by_id(_user_plan_id(user))
    if not plan.is_unlimited and payload.tokens > (user.tokens_remaining or 0):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient tokens")

    user.tokens_used = (user.tokens_used or 0) + payload.tokens
    if not plan.is_unlimited:
        user.tokens_remaining = max(0, (user.tokens_allocated or 0) - user.tokens_used)
    _commit(db, "consume tokens", user_id=user.id)
    db.refresh(user)

    if not plan.is_unlimited and user.tokens_remaining == 0:
        notification_service.notify(
            db,
            user.id,
            "Token quota exhausted",
            "You have used all the tokens included in your plan.",
            type="warning",
        )
    return {"message": "Tokens consumed", "tokens": _serialize_tokens(user)}


@router.post("/initialize-tokens")
def initialize_tokens(user: DBUser = Depends(require_user), db: Session = Depends(get_db)):
    tokens = initialize_user_tokens(_user_plan_id(user))
    user.tokens_allocated = tokens["allocated"]
    user.tokens_used = tokens["used"]
    user.tokens_remaining = tokens["remaining"]
    user.updated_at = datetime.now()
    _commit(db, "initialize tokens", user_id=user.id)
    db.refresh(user)
    return {"message": "Tokens initialized", "tokens": _serialize_tokens(user)}

from __future__ import annotations

import re
import time
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...core.db_models import DBChatbox, DBPredefinedQuestion, DBUser
from ...core.logging import get_logger
from ...core.models import (
    ChatboxConfiguration,
    ChatboxCreateRequest,
    ChatboxStatus,
    ChatboxUpdateRequest,
    EmailTokenRequest,
    PredefinedQuestionRequest,
    VisitRequest,
)
from ..security import decode_jwt, encode_jwt, require_user

logger = get_logger(__name__)

router = APIRouter(prefix="/api/chatboxes", tags=["chatboxes"])

EMAIL_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60
EMAIL_TOKEN_PURPOSE = "email"
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def serialize_analytics(chatbox: DBChatbox) -> dict[str, Any]:
    return {
        "websiteVisits": chatbox.website_visits or 0,
        "conversationsInitiated": chatbox.conversations_initiated or 0,
        "totalConversations": chatbox.total_conversations or 0,
        "leadsCollected": chatbox.leads_collected or 0,
        "totalTokenUsed": chatbox.total_token_used or 0,
        "avgSessionTime": chatbox.avg_session_time or 0,
        "avgConversationTime": chatbox.avg_conversation_time or 0,
        "lastUpdated": chatbox.analytics_updated_at.isoformat() if chatbox.analytics_updated_at else None,
    }


def serialize_chatbox(chatbox: DBChatbox) -> dict[str, Any]:
    return {
        "_id": chatbox.id,
        "name": chatbox.name,
        "organizationName": chatbox.organization_name,
        "organizationLogo": chatbox.organization_logo,
        "category": chatbox.category,
        "status": chatbox.status,
        "domainUrl": chatbox.domain_url,
        "customContent": chatbox.custom_content,
        "createdBy": chatbox.created_by,
        "configuration": dict(chatbox.configuration_json or {}),
        "analytics": serialize_analytics(chatbox),
        "createdAt": chatbox.created_at.isoformat() if chatbox.created_at else None,
        "updatedAt": chatbox.updated_at.isoformat() if chatbox.updated_at else None,
    }


def _serialize_public_chatbox(chatbox: DBChatbox) -> dict[str, Any]:
    # Embed scripts only need presentation fields.
    return {
        "_id": chatbox.id,
        "name": chatbox.name,
        "organizationName": chatbox.organization_name,
        "organizationLogo": chatbox.organization_logo,
        "category": chatbox.category,
        "status": chatbox.status,
        "configuration": dict(chatbox.configuration_json or {}),
        "predefinedQuestions": [
            serialize_question(question)
            for question in sorted(
                chatbox.predefined_questions,
                key=lambda item: (item.sort_order or 0, item.created_at or datetime.min),
            )
            if question.is_active
        ],
    }


def _get_owned_chatbox(db: Session, chatbox_id: str, user: DBUser) -> DBChatbox:
    chatbox = (
        db.query(DBChatbox)
        .filter(DBChatbox.id == chatbox_id, DBChatbox.created_by == user.id)
        .first()
    )
    if not chatbox:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chatbox not found")
    return chatbox


def _commit(db: Session, action: str, **context: Any) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A chatbox with this name already exists",
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(f"Failed to {action}.", extra={"error": str(exc), **context})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action}",
        ) from exc


# Public routes, declared before the parameterised ones.

@router.get("/by-name/{name}")
def get_chatbox_by_name(name: str, db: Session = Depends(get_db)):
    chatbox = db.query(DBChatbox).filter(DBChatbox.name == name).first()
    if not chatbox:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chatbox not found")
    return _serialize_public_chatbox(chatbox)


@router.post("/increment-visit")
def increment_website_visits(payload: VisitRequest, db: Session = Depends(get_db)):
    chatbox = db.query(DBChatbox).filter(DBChatbox.name == payload.name).first()
    if not chatbox:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chatbox not found")
    chatbox.website_visits = (chatbox.website_visits or 0) + 1
    chatbox.analytics_updated_at = datetime.now()
    _commit(db, "record website visit", chatbox_id=chatbox.id)
    return {"visits": chatbox.website_visits}


@router.post("/encrypt-email")
def encrypt_email(payload: EmailTokenRequest):
    """Sign a visitor email into a URL-safe token so it never appears in plain text in links."""
    if not payload.email or not payload.chatbox_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email and chatboxId are required")
    if not _EMAIL_RE.match(payload.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email format")
    now = int(time.time())
    token = encode_jwt(
        {
            "purpose": EMAIL_TOKEN_PURPOSE,
            "email": payload.email,
            "chatboxId": payload.chatbox_id,
            "timestamp": now * 1000,
            "iat": now,
            "exp": now + EMAIL_TOKEN_TTL_SECONDS,
        }
    )
    return {"token": token}


@router.get("/decrypt-email/{token}")
def decrypt_email(token: str):
    try:
        decoded = decode_jwt(token)
    except HTTPException as exc:
        logger.warning("Rejected email token.", extra={"error": str(exc.detail)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token") from exc
    if decoded.get("purpose") != EMAIL_TOKEN_PURPOSE or not decoded.get("email"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return {"email": decoded["email"], "chatboxId": decoded.get("chatboxId"), "valid": True}


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED, include_in_schema=False)
def create_chatbox(
    payload: ChatboxCreateRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = DBChatbox(
        name=f"{payload.organization_name}-{int(time.time() * 1000)}",
        organization_name=payload.organization_name,
        organization_logo=payload.organization_logo,
        category=payload.category.value if payload.category else None,
        domain_url=(payload.domain_url or "").strip() or None,
        status=(payload.status or ChatboxStatus.ACTIVE).value,
        custom_content=payload.custom_content,
        created_by=user.id,
        configuration_json={
            "textFont": payload.text_font,
            "themeColor": payload.theme_color,
            "displayName": payload.display_name,
            "profileAvatar": "",
        },
    )
    db.add(chatbox)
    _commit(db, "create chatbox", user_id=user.id)
    db.refresh(chatbox)
    logger.info("Chatbox created.", extra={"chatbox_id": chatbox.id, "user_id": user.id})
    return {"message": "Chatbox created", "chatbox": serialize_chatbox(chatbox)}


@router.get("")
@router.get("/", include_in_schema=False)
def get_chatboxes(user: DBUser = Depends(require_user), db: Session = Depends(get_db)):
    chatboxes = (
        db.query(DBChatbox)
        .filter(DBChatbox.created_by == user.id)
        .order_by(desc(DBChatbox.created_at))
        .all()
    )
    return [serialize_chatbox(chatbox) for chatbox in chatboxes]


@router.get("/{chatbox_id}")
def get_chatbox_by_id(
    chatbox_id: str,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    return serialize_chatbox(_get_owned_chatbox(db, chatbox_id, user))


@router.put("/{chatbox_id}")
def update_chatbox(
    chatbox_id: str,
    payload: ChatboxUpdateRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = _get_owned_chatbox(db, chatbox_id, user)
    changes = payload.model_dump(exclude_unset=True)

    configuration = changes.pop("configuration", None)
    if configuration is not None:
        merged = dict(chatbox.configuration_json or {})
        merged.update(
            payload.configuration.model_dump(by_alias=True, exclude_unset=True)
        )
        chatbox.configuration_json = merged

    for key, value in changes.items():
        if key == "organization_name" and not value:
            continue
        if key == "domain_url":
            value = (value or "").strip() or None
        elif key in {"status", "category"} and value is not None:
            value = getattr(value, "value", value)
        setattr(chatbox, key, value)

    _commit(db, "update chatbox", chatbox_id=chatbox_id)
    db.refresh(chatbox)
    return {"message": "Updated successfully", "chatbox": serialize_chatbox(chatbox)}


@router.delete("/{chatbox_id}")
def delete_chatbox(
    chatbox_id: str,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = _get_owned_chatbox(db, chatbox_id, user)
    db.delete(chatbox)
    _commit(db, "delete chatbox", chatbox_id=chatbox_id)
    return {"message": "Deleted successfully"}


@router.patch("/{chatbox_id}/configuration")
def update_chatbox_configuration(
    chatbox_id: str,
    payload: ChatboxConfiguration,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = _get_owned_chatbox(db, chatbox_id, user)
    merged = dict(chatbox.configuration_json or {})
    merged.update(payload.model_dump(by_alias=True, exclude_unset=True))
    chatbox.configuration_json = merged
    _commit(db, "update chatbox configuration", chatbox_id=chatbox_id)
    db.refresh(chatbox)
    return {"message": "Configuration updated", "chatbox": serialize_chatbox(chatbox)}


def serialize_question(question: DBPredefinedQuestion) -> dict[str, Any]:
    return {
        "_id": question.id,
        "question": question.question,
        "order": question.sort_order or 0,
        "isActive": bool(question.is_active),
    }


def _get_question(db: Session, chatbox: DBChatbox, question_id: str) -> DBPredefinedQuestion:
    question = (
        db.query(DBPredefinedQuestion)
        .filter(DBPredefinedQuestion.id == question_id, DBPredefinedQuestion.chatbox_id == chatbox.id)
        .first()
    )
    if not question:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Predefined question not found")
    return question


@router.get("/{chatbox_id}/predefined-questions")
def get_predefined_questions(
    chatbox_id: str,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = _get_owned_chatbox(db, chatbox_id, user)
    questions = (
        db.query(DBPredefinedQuestion)
        .filter(DBPredefinedQuestion.chatbox_id == chatbox.id)
        .order_by(DBPredefinedQuestion.sort_order, DBPredefinedQuestion.created_at)
        .all()
    )
    return {"questions": [serialize_question(question) for question in questions]}


@router.post("/{chatbox_id}/predefined-questions", status_code=status.HTTP_201_CREATED)
def add_predefined_question(
    chatbox_id: str,
    payload: PredefinedQuestionRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    text = (payload.question or "").strip()
    if not text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Question text is required")
    chatbox = _get_owned_chatbox(db, chatbox_id, user)

    if payload.order is None:
        # New questions go to the end of the list
        order = db.query(DBPredefinedQuestion).filter(DBPredefinedQuestion.chatbox_id == chatbox.id).count()
    else:
        order = payload.order
    question = DBPredefinedQuestion(
        chatbox_id=chatbox.id,
        question=text,
        sort_order=order,
        is_active=True if payload.is_active is None else payload.is_active,
    )
    db.add(question)
    _commit(db, "add predefined question", chatbox_id=chatbox.id)
    db.refresh(question)
    return {"message": "Predefined question added successfully", "question": serialize_question(question)}


@router.put("/{chatbox_id}/predefined-questions/{question_id}")
def update_predefined_question(
    chatbox_id: str,
    question_id: str,
    payload: PredefinedQuestionRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = _get_owned_chatbox(db, chatbox_id, user)
    question = _get_question(db, chatbox, question_id)

    changes = payload.model_dump(exclude_unset=True)
    if "question" in changes:
        text = (payload.question or "").strip()
        if not text:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Question text cannot be empty")
        question.question = text
    if payload.order is not None:
        question.sort_order = payload.order
    if payload.is_active is not None:
        question.is_active = payload.is_active

    _commit(db, "update predefined question", chatbox_id=chatbox.id, question_id=question_id)
    db.refresh(question)
    return {"message": "Predefined question updated successfully", "question": serialize_question(question)}


@router.delete("/{chatbox_id}/predefined-questions/{question_id}")
def delete_predefined_question(
    chatbox_id: str,
    question_id: str,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = _get_owned_chatbox(db, chatbox_id, user)
    db.delete(_get_question(db, chatbox, question_id))
    _commit(db, "delete predefined question", chatbox_id=chatbox.id, question_id=question_id)
    return {"message": "Predefined question deleted successfully"}

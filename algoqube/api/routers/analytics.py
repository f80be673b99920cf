from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.requests import Request

from ...core.database import get_db
from ...core.db_models import DBChatbox
from ...core.logging import get_logger
from ...core.models import ConversationMessageRequest, ConversationStatus
from ...services import conversation_service
from ..security import client_ip
from .chatboxes import serialize_analytics

logger = get_logger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


async def read_beacon_body(request: Request) -> dict[str, Any]:
    """JSON body from fetch() or navigator.sendBeacon, which posts it as text/plain."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request body")
    return payload


def _positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _get_chatbox_by_name(db: Session, name: str) -> DBChatbox:
    chatbox = db.query(DBChatbox).filter(DBChatbox.name == name).first()
    if not chatbox:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chatbox not found")
    return chatbox


def _get_conversation(db: Session, name: str, conversation_id: str):
    conversation = conversation_service.get_conversation(db, name, conversation_id)
    if not conversation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


def _save(db: Session, chatbox: DBChatbox, action: str) -> None:
    chatbox.analytics_updated_at = datetime.now()
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            f"Analytics {action} failed.",
            extra={"error": str(exc), "chatbox": chatbox.name},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server error",
        ) from exc


@router.post("/visit/{name}")
def record_visit(name: str, db: Session = Depends(get_db)):
    chatbox = _get_chatbox_by_name(db, name)
    chatbox.website_visits = (chatbox.website_visits or 0) + 1
    _save(db, chatbox, "visit")
    return {"visits": chatbox.website_visits}


@router.post("/initiate/{name}")
def initiate_conversation(name: str, request: Request, db: Session = Depends(get_db)):
    chatbox = _get_chatbox_by_name(db, name)
    chatbox.conversations_initiated = (chatbox.conversations_initiated or 0) + 1
    conversation = conversation_service.start_conversation(
        db,
        chatbox,
        website=request.headers.get("origin") or request.headers.get("referer") or "unknown",
        user_agent=request.headers.get("user-agent") or "unknown",
        ip=client_ip(request),
    )
    _save(db, chatbox, "initiate")
    return {
        "conversationId": conversation.conversation_id,
        "conversationsInitiated": chatbox.conversations_initiated,
    }


@router.post("/message/{name}")
def record_message(name: str, payload: ConversationMessageRequest, db: Session = Depends(get_db)):
    if not payload.conversation_id or not payload.role or not payload.content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="conversationId, role and content are required",
        )
    chatbox = _get_chatbox_by_name(db, name)
    conversation = _get_conversation(db, name, payload.conversation_id)

    tokens = conversation_service.append_message(conversation, payload.role.value, payload.content)
    chatbox.total_token_used = (chatbox.total_token_used or 0) + tokens
    # Usage is still recorded on the conversation when the owner is out of quota
    conversation_service.charge_owner_tokens(db, chatbox, tokens)
    _save(db, chatbox, "message")
    return {
        "message": "Message saved",
        "messageCount": conversation.message_count,
        "tokensUsed": conversation.tokens_used,
        "tokensForMessage": tokens,
    }


@router.post("/complete/{name}")
def complete_conversation(
    name: str,
    body: dict[str, Any] = Depends(read_beacon_body),
    db: Session = Depends(get_db),
):
    conversation_id = body.get("conversationId")
    duration = body.get("duration")
    if not conversation_id or not isinstance(conversation_id, str) or not _positive_number(duration):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid conversationId or duration")

    chatbox = _get_chatbox_by_name(db, name)
    conversation = _get_conversation(db, name, conversation_id)
    already_completed = conversation.status == ConversationStatus.COMPLETED.value
    conversation.status = ConversationStatus.COMPLETED.value
    conversation.duration = int(duration)

    # A repeated beacon for the same conversation must not be averaged twice
    if not already_completed:
        previous_count = chatbox.total_conversations or 0
        previous_avg = chatbox.avg_conversation_time or 0.0
        chatbox.total_conversations = previous_count + 1
        chatbox.avg_conversation_time = (previous_avg * previous_count + duration) / chatbox.total_conversations
    _save(db, chatbox, "complete")
    return {
        "totalConversations": chatbox.total_conversations,
        "avgConversationTime": chatbox.avg_conversation_time,
    }


@router.post("/session/{name}")
def record_session(
    name: str,
    body: dict[str, Any] = Depends(read_beacon_body),
    db: Session = Depends(get_db),
):
    duration = body.get("duration")
    if not _positive_number(duration):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid duration")

    chatbox = _get_chatbox_by_name(db, name)
    # Running average over visits; a session without a recorded visit counts as one
    visits = chatbox.website_visits or 1
    previous_avg = chatbox.avg_session_time or 0.0
    new_avg = (previous_avg * (visits - 1) + duration) / visits
    chatbox.avg_session_time = new_avg
    _save(db, chatbox, "session")
    return {"avgSessionTime": new_avg}


@router.get("/{name}")
def get_analytics(name: str, db: Session = Depends(get_db)):
    chatbox = _get_chatbox_by_name(db, name)
    return {"name": chatbox.name, "analytics": serialize_analytics(chatbox)}

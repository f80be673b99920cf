from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...core.db_models import DBChatbox, DBConversation, DBUser
from ...core.logging import get_logger
from ...core.models import ConversationExportRequest, ConversationStatusRequest, ExportFormat
from ...services import conversation_service
from ..security import require_user

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/conversations",
    tags=["conversations"],
    dependencies=[Depends(require_user)],
)


def _get_owned_chatbox(db: Session, chatbox_name: str, user: DBUser) -> DBChatbox:
    chatbox = (
        db.query(DBChatbox)
        .filter(DBChatbox.name == chatbox_name, DBChatbox.created_by == user.id)
        .first()
    )
    if not chatbox:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chatbox not found or access denied")
    return chatbox


def _get_conversation(db: Session, chatbox: DBChatbox, conversation_id: str) -> DBConversation:
    conversation = conversation_service.get_conversation(db, chatbox.name, conversation_id)
    if not conversation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


def _commit(db: Session, action: str, **context: Any) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(f"Failed to {action}.", extra={"error": str(exc), **context})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server error",
        ) from exc


@router.get("")
@router.get("/", include_in_schema=False)
def list_all_conversations(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    chatbox_name: Optional[str] = Query(default=None, alias="chatboxName"),
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox_query = db.query(DBChatbox).filter(DBChatbox.created_by == user.id)
    if chatbox_name:
        chatbox_query = chatbox_query.filter(DBChatbox.name.ilike(f"%{chatbox_name}%"))
    organizations = {chatbox.name: chatbox.organization_name for chatbox in chatbox_query.all()}

    query = conversation_service.filter_conversations(
        db, organizations.keys(), status=status_filter, start_date=start_date, end_date=end_date
    )
    result = conversation_service.paginate(query, page=page, limit=limit)
    result["conversations"] = [
        {
            **conversation_service.serialize_conversation(conversation),
            "organizationName": organizations.get(conversation.chatbox_name) or "Unknown",
        }
        for conversation in result["conversations"]
    ]
    return result


@router.get("/{chatbox_name}")
def list_chatbox_conversations(
    chatbox_name: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = _get_owned_chatbox(db, chatbox_name, user)
    query = conversation_service.filter_conversations(
        db, [chatbox.name], status=status_filter, start_date=start_date, end_date=end_date
    )
    result = conversation_service.paginate(query, page=page, limit=limit)
    return {
        "chatboxName": chatbox.name,
        "organizationName": chatbox.organization_name,
        "conversations": [
            conversation_service.serialize_conversation(conversation)
            for conversation in result["conversations"]
        ],
        "pagination": result["pagination"],
    }


@router.get("/{chatbox_name}/stats")
def get_conversation_stats(
    chatbox_name: str,
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = _get_owned_chatbox(db, chatbox_name, user)
    return conversation_service.conversation_stats(
        db, chatbox.name, start_date=start_date, end_date=end_date
    )


@router.post("/{chatbox_name}/export")
def export_conversations(
    chatbox_name: str,
    payload: Optional[ConversationExportRequest] = None,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    payload = payload or ConversationExportRequest()
    export_format = (payload.format or ExportFormat.JSON.value).lower()
    if export_format not in {item.value for item in ExportFormat}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid format. Must be json or csv")

    chatbox = _get_owned_chatbox(db, chatbox_name, user)
    conversations = (
        conversation_service.filter_conversations(
            db,
            [chatbox.name],
            status=payload.status,
            start_date=payload.start_date,
            end_date=payload.end_date,
        )
        .order_by(DBConversation.started_at.desc())
        .all()
    )

    if export_format == ExportFormat.CSV.value:
        file_name = f"{chatbox.name}_conversations_{date.today().isoformat()}.csv"
        return PlainTextResponse(
            conversation_service.export_csv(conversations),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
        )

    return {
        "chatboxName": chatbox.name,
        "organizationName": chatbox.organization_name,
        "exportDate": datetime.now().isoformat(),
        "totalConversations": len(conversations),
        "conversations": [
            conversation_service.serialize_conversation(conversation)
            for conversation in conversations
        ],
    }


@router.get("/{chatbox_name}/{conversation_id}")
def get_conversation(
    chatbox_name: str,
    conversation_id: str,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = _get_owned_chatbox(db, chatbox_name, user)
    conversation = _get_conversation(db, chatbox, conversation_id)
    return {
        "chatboxName": chatbox.name,
        "organizationName": chatbox.organization_name,
        "conversation": conversation_service.serialize_conversation(conversation),
    }


@router.put("/{chatbox_name}/{conversation_id}/status")
def update_conversation_status(
    chatbox_name: str,
    conversation_id: str,
    payload: ConversationStatusRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    if payload.status not in conversation_service.CONVERSATION_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid status. Must be active, completed, or abandoned",
        )
    chatbox = _get_owned_chatbox(db, chatbox_name, user)
    conversation = _get_conversation(db, chatbox, conversation_id)
    conversation_service.set_status(conversation, payload.status)
    _commit(db, "update conversation status", conversation_id=conversation_id)
    return {
        "message": "Conversation status updated",
        "conversation": {
            "id": conversation.conversation_id,
            "status": conversation.status,
            "duration": conversation.duration,
        },
    }


@router.delete("/{chatbox_name}/{conversation_id}")
def delete_conversation(
    chatbox_name: str,
    conversation_id: str,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    chatbox = _get_owned_chatbox(db, chatbox_name, user)
    conversation = _get_conversation(db, chatbox, conversation_id)
    db.delete(conversation)
    _commit(db, "delete conversation", conversation_id=conversation_id)
    return {"message": "Conversation deleted successfully"}

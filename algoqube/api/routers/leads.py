from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...core.db_models import DBChatbox, DBLead, DBUser
from ...core.logging import get_logger
from ...core.models import ChatboxStatus, LeadCreateRequest, LeadStatus, LeadUpdateRequest
from ...services import notification_service
from ..security import require_user

logger = get_logger(__name__)

router = APIRouter(prefix="/api/leads", tags=["leads"])

ALLOWED_STATUSES = {item.value for item in LeadStatus}


def serialize_lead(lead: DBLead) -> dict[str, Any]:
    return {
        "_id": lead.id,
        "chatbox": lead.chatbox_id,
        "createdBy": lead.created_by,
        "chatbotName": lead.chatbot_name,
        "chatbotDisplayName": lead.chatbot_display_name,
        "organizationName": lead.organization_name,
        "name": lead.name,
        "email": lead.email,
        "phone": lead.phone,
        "company": lead.company,
        "message": lead.message,
        "sourceMessage": lead.source_message,
        "conversationId": lead.conversation_id,
        "metadata": lead.metadata_json or {},
        "status": lead.status,
        "createdAt": lead.created_at.isoformat() if lead.created_at else None,
        "updatedAt": lead.updated_at.isoformat() if lead.updated_at else None,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED, include_in_schema=False)
def create_lead(payload: LeadCreateRequest, db: Session = Depends(get_db)):
    if not payload.chatbox_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="chatboxId is required")
    if not all([payload.name, payload.email, payload.phone, payload.company]):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required lead fields")

    chatbox = db.query(DBChatbox).filter(DBChatbox.id == payload.chatbox_id).first()
    if not chatbox:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chatbot not found")

    if (chatbox.status or "").strip().lower() != ChatboxStatus.ACTIVE.value:
        logger.warning(
            "Chatbot is not active, capturing lead regardless.",
            extra={"chatbox_id": chatbox.id, "status": chatbox.status},
        )

    configuration = chatbox.configuration_json or {}
    lead = DBLead(
        chatbox_id=chatbox.id,
        created_by=chatbox.created_by,
        chatbot_name=chatbox.name,
        chatbot_display_name=configuration.get("displayName"),
        organization_name=chatbox.organization_name,
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        company=payload.company,
        message=payload.message,
        source_message=payload.source_message,
        conversation_id=payload.conversation_id,
        metadata_json=payload.metadata or {},
        status=payload.status if payload.status in ALLOWED_STATUSES else LeadStatus.NEW.value,
    )
    db.add(lead)
    chatbox.leads_collected = (chatbox.leads_collected or 0) + 1
    chatbox.analytics_updated_at = datetime.now()
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to capture lead.", extra={"error": str(exc), "chatbox_id": chatbox.id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to capture lead",
        ) from exc
    db.refresh(lead)

    if chatbox.created_by:
        notification_service.notify(
            db,
            chatbox.created_by,
            "New lead captured",
            f"{lead.name} left their details on {chatbox.organization_name}.",
            type="success",
            data={"leadId": lead.id, "chatboxId": chatbox.id},
        )

    return {"message": "Lead captured successfully", "leadId": lead.id}


@router.get("")
@router.get("/", include_in_schema=False)
def get_leads(
    chatbox_id: Optional[str] = Query(default=None, alias="chatboxId"),
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    query = db.query(DBLead).filter(DBLead.created_by == user.id)
    if chatbox_id:
        query = query.filter(DBLead.chatbox_id == chatbox_id)
    leads = query.order_by(desc(DBLead.created_at)).all()
    return {"leads": [serialize_lead(lead) for lead in leads]}


@router.patch("/{lead_id}")
def update_lead(
    lead_id: str,
    payload: LeadUpdateRequest,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not payload.status or payload.status not in ALLOWED_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status value")

    lead = db.query(DBLead).filter(DBLead.id == lead_id, DBLead.created_by == user.id).first()
    if not lead:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")

    lead.status = payload.status
    lead.updated_at = datetime.now()
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to update lead.", extra={"error": str(exc), "lead_id": lead_id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update lead",
        ) from exc
    db.refresh(lead)
    return {"message": "Lead updated", "lead": serialize_lead(lead)}

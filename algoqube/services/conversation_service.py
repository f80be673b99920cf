from __future__ import annotations

import csv
import math
import secrets
import time
from datetime import datetime
from io import StringIO
from typing import Any, Iterable, Optional

from sqlalchemy import case, desc, func
from sqlalchemy.orm import Query, Session

from ..core.db_models import DBChatbox, DBConversation, DBUser
from ..core.logging import get_logger
from ..core.models import ConversationStatus
from .plans import get_plan_by_name

logger = get_logger(__name__)

MIN_TOKENS_PER_MESSAGE = 1
MAX_TOKENS_PER_MESSAGE = 5

CONVERSATION_STATUSES = {item.value for item in ConversationStatus}

EXPORT_COLUMNS = [
    ("conversationId", "Conversation ID"),
    ("timestamp", "Timestamp"),
    ("duration", "Duration (seconds)"),
    ("messageCount", "Message Count"),
    ("tokensUsed", "Tokens Used"),
    ("status", "Status"),
    ("website", "Website"),
    ("userAgent", "User Agent"),
    ("ip", "IP Address"),
]


def calculate_tokens(text: str) -> int:
    """Rough token estimate for a chat message: one token per four characters, clamped to 1..5."""
    if not text:
        return 0
    estimated = math.ceil(len(text) / 4)
    return max(MIN_TOKENS_PER_MESSAGE, min(MAX_TOKENS_PER_MESSAGE, estimated))


def generate_conversation_id() -> str:
    return f"conv_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    # Stored timestamps are naive local time
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def serialize_conversation(conversation: DBConversation, *, include_messages: bool = True) -> dict[str, Any]:
    payload = {
        "_id": conversation.id,
        "conversationId": conversation.conversation_id,
        "chatboxId": conversation.chatbox_id,
        "chatboxName": conversation.chatbox_name,
        "timestamp": _isoformat(conversation.started_at),
        "duration": conversation.duration or 0,
        "messageCount": conversation.message_count or 0,
        "tokensUsed": conversation.tokens_used or 0,
        "website": conversation.website,
        "userAgent": conversation.user_agent,
        "ip": conversation.ip,
        "status": conversation.status,
        "createdAt": _isoformat(conversation.created_at),
        "updatedAt": _isoformat(conversation.updated_at),
    }
    if include_messages:
        payload["messages"] = list(conversation.messages_json or [])
    return payload


def start_conversation(
    db: Session,
    chatbox: DBChatbox,
    *,
    website: str = "unknown",
    user_agent: str = "unknown",
    ip: str = "unknown",
) -> DBConversation:
    """Open a conversation for a chatbox. The caller commits."""
    conversation = DBConversation(
        conversation_id=generate_conversation_id(),
        chatbox_id=chatbox.id,
        chatbox_name=chatbox.name,
        started_at=datetime.now(),
        website=website or "unknown",
        user_agent=user_agent or "unknown",
        ip=ip or "unknown",
        status=ConversationStatus.ACTIVE.value,
        messages_json=[],
    )
    db.add(conversation)
    return conversation


def get_conversation(db: Session, chatbox_name: str, conversation_id: str) -> Optional[DBConversation]:
    return (
        db.query(DBConversation)
        .filter(
            DBConversation.chatbox_name == chatbox_name,
            DBConversation.conversation_id == conversation_id,
        )
        .first()
    )


def append_message(conversation: DBConversation, role: str, content: str) -> int:
    """Record a message on the conversation and return the tokens charged for it."""
    tokens = calculate_tokens(content)
    messages = list(conversation.messages_json or [])
    messages.append(
        {
            "role": role,
            "content": content,
            "timestamp": datetime.now().isoformat(),
            "tokensUsed": tokens,
        }
    )
    # Reassign so SQLAlchemy notices the JSON change
    conversation.messages_json = messages
    conversation.message_count = len(messages)
    conversation.tokens_used = (conversation.tokens_used or 0) + tokens
    return tokens


def charge_owner_tokens(db: Session, chatbox: DBChatbox, tokens: int) -> bool:
    """Deduct message tokens from the chatbox owner's quota.

    Unlimited plans only accumulate usage. Returns False when the owner is
    missing or does not have enough tokens left; nothing is deducted then.
    """
    if tokens <= 0:
        return True
    owner = db.query(DBUser).filter(DBUser.id == chatbox.created_by).first() if chatbox.created_by else None
    if not owner:
        logger.warning("Chatbox owner not found for token accounting.", extra={"chatbox_id": chatbox.id})
        return False

    plan = get_plan_by_name(owner.plan_name)
    query = db.query(DBUser).filter(DBUser.id == owner.id)
    if plan and plan.is_unlimited:
        query.update({DBUser.tokens_used: DBUser.tokens_used + tokens}, synchronize_session=False)
        return True

    # Single conditional UPDATE so concurrent messages cannot overdraw the quota
    updated = query.filter(DBUser.tokens_remaining >= tokens).update(
        {
            DBUser.tokens_used: DBUser.tokens_used + tokens,
            DBUser.tokens_remaining: DBUser.tokens_remaining - tokens,
        },
        synchronize_session=False,
    )
    if not updated:
        logger.warning(
            "Owner has insufficient tokens for message.",
            extra={"user_id": owner.id, "required": tokens, "available": owner.tokens_remaining},
        )
        return False
    return True


def set_status(conversation: DBConversation, new_status: str) -> None:
    conversation.status = new_status
    if new_status == ConversationStatus.COMPLETED.value and not conversation.duration:
        started_at = conversation.started_at or datetime.now()
        conversation.duration = max(0, int((datetime.now() - started_at).total_seconds()))


def filter_conversations(
    db: Session,
    chatbox_names: Iterable[str],
    *,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Query:
    query = db.query(DBConversation).filter(DBConversation.chatbox_name.in_(list(chatbox_names)))
    if status and status != "all":
        query = query.filter(DBConversation.status == status)
    if start_date:
        query = query.filter(DBConversation.started_at >= _naive(start_date))
    if end_date:
        query = query.filter(DBConversation.started_at <= _naive(end_date))
    return query


def paginate(query: Query, *, page: int, limit: int) -> dict[str, Any]:
    total = query.count()
    rows = (
        query.order_by(desc(DBConversation.started_at))
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "conversations": rows,
        "pagination": {
            "currentPage": page,
            "totalPages": math.ceil(total / limit) if limit else 0,
            "totalConversations": total,
            "hasNext": page * limit < total,
            "hasPrev": page > 1,
        },
    }


def conversation_stats(
    db: Session,
    chatbox_name: str,
    *,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict[str, Any]:
    base = filter_conversations(db, [chatbox_name], start_date=start_date, end_date=end_date)

    def status_count(value: str):
        return func.sum(case((DBConversation.status == value, 1), else_=0))

    row = base.with_entities(
        func.count(DBConversation.id),
        status_count(ConversationStatus.ACTIVE.value),
        status_count(ConversationStatus.COMPLETED.value),
        status_count(ConversationStatus.ABANDONED.value),
        func.sum(DBConversation.message_count),
        func.sum(DBConversation.tokens_used),
        func.avg(DBConversation.duration),
        func.avg(DBConversation.message_count),
    ).one()
    total, active, completed, abandoned, messages, tokens, avg_duration, avg_messages = row
    total = int(total or 0)
    completed = int(completed or 0)

    daily_rows = (
        base.with_entities(func.date(DBConversation.started_at), func.count(DBConversation.id))
        .group_by(func.date(DBConversation.started_at))
        .all()
    )

    return {
        "chatboxName": chatbox_name,
        "period": {
            "startDate": _isoformat(start_date),
            "endDate": _isoformat(end_date),
        },
        "overview": {
            "totalConversations": total,
            "activeConversations": int(active or 0),
            "completedConversations": completed,
            "abandonedConversations": int(abandoned or 0),
            "completionRate": (completed / total) * 100 if total else 0,
        },
        "engagement": {
            "totalMessages": int(messages or 0),
            "totalTokens": int(tokens or 0),
            "avgMessagesPerConversation": round(float(avg_messages or 0), 2),
            "avgDuration": round(float(avg_duration or 0), 2),
        },
        "dailyStats": {str(day): int(count) for day, count in daily_rows},
    }


def export_csv(conversations: Iterable[DBConversation]) -> str:
    output = StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL)
    writer.writerow([label for _, label in EXPORT_COLUMNS])
    for conversation in conversations:
        row = serialize_conversation(conversation, include_messages=False)
        writer.writerow(["" if row.get(key) is None else row.get(key) for key, _ in EXPORT_COLUMNS])
    return output.getvalue()

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.db_models import DBNotification
from ..core.logging import get_logger
from ..core.models import NotificationType

logger = get_logger(__name__)


def serialize_notification(notification: DBNotification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "userId": notification.user_id,
        "title": notification.title,
        "message": notification.message,
        "type": notification.type,
        "read": bool(notification.is_read),
        "data": notification.data_json,
        "createdAt": notification.created_at.isoformat() if notification.created_at else None,
        "updatedAt": notification.updated_at.isoformat() if notification.updated_at else None,
    }


def create_notification(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    type: str = NotificationType.INFO.value,
    data: Optional[dict[str, Any]] = None,
) -> DBNotification:
    """Persist a notification for a user. Commits the session."""
    if type not in {item.value for item in NotificationType}:
        type = NotificationType.INFO.value
    notification = DBNotification(
        user_id=user_id,
        title=title.strip(),
        message=message.strip(),
        type=type,
        is_read=False,
        data_json=data,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def notify(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    type: str = NotificationType.INFO.value,
    data: Optional[dict[str, Any]] = None,
) -> Optional[DBNotification]:
    """Best-effort variant of create_notification for use after the main change is committed.

    A storage failure is rolled back and logged; the caller's response is unaffected.
    """
    try:
        return create_notification(db, user_id, title, message, type=type, data=data)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "Unable to create notification.",
            extra={"error": str(exc), "user_id": user_id, "title": title},
        )
        return None


def count_unread(db: Session, user_id: str) -> int:
    return (
        db.query(DBNotification)
        .filter(DBNotification.user_id == user_id, DBNotification.is_read.is_(False))
        .count()
    )


def list_notifications(
    db: Session,
    user_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
) -> dict[str, Any]:
    query = db.query(DBNotification).filter(DBNotification.user_id == user_id)
    if unread_only:
        query = query.filter(DBNotification.is_read.is_(False))

    total = query.count()
    rows = (
        query.order_by(desc(DBNotification.created_at))
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "notifications": [serialize_notification(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0,
        },
        "unreadCount": count_unread(db, user_id),
    }


def get_user_notification(db: Session, user_id: str, notification_id: str) -> Optional[DBNotification]:
    return (
        db.query(DBNotification)
        .filter(DBNotification.id == notification_id, DBNotification.user_id == user_id)
        .first()
    )


def mark_as_read(db: Session, user_id: str, notification_id: str) -> Optional[DBNotification]:
    notification = get_user_notification(db, user_id, notification_id)
    if not notification:
        return None
    notification.is_read = True
    notification.updated_at = datetime.now()
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_as_read(db: Session, user_id: str) -> int:
    updated = (
        db.query(DBNotification)
        .filter(DBNotification.user_id == user_id, DBNotification.is_read.is_(False))
        .update({DBNotification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return updated


def delete_notification(db: Session, user_id: str, notification_id: str) -> bool:
    notification = get_user_notification(db, user_id, notification_id)
    if not notification:
        return False
    db.delete(notification)
    db.commit()
    return True

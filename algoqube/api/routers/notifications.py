from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...core.db_models import DBUser
from ...services import notification_service
from ..security import require_user

router = APIRouter(
    prefix="/api/notifications",
    tags=["notifications"],
    dependencies=[Depends(require_user)],
)


@router.get("")
@router.get("/", include_in_schema=False)
def get_user_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    return notification_service.list_notifications(
        db, user.id, page=page, limit=limit, unread_only=unread_only
    )


@router.get("/unread-count")
def get_unread_count(user: DBUser = Depends(require_user), db: Session = Depends(get_db)):
    return {"unreadCount": notification_service.count_unread(db, user.id)}


@router.patch("/mark-all-read")
def mark_all_notifications_as_read(user: DBUser = Depends(require_user), db: Session = Depends(get_db)):
    updated = notification_service.mark_all_as_read(db, user.id)
    return {"success": True, "message": "All notifications marked as read", "updated": updated}


@router.patch("/{notification_id}/read")
def mark_notification_as_read(
    notification_id: str,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    notification = notification_service.mark_as_read(db, user.id, notification_id)
    if not notification:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return {"success": True, "notification": notification_service.serialize_notification(notification)}


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: str,
    user: DBUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not notification_service.delete_notification(db, user.id, notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return {"success": True, "message": "Notification deleted"}

"""
Notifications Router - /me/notifications endpoints.

Provides notification listing and read status.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from projecthub.core.deps import get_current_identity, get_db
from projecthub.core.errors import NotFoundError
from projecthub.schemas.auth import Identity
from projecthub.schemas.notification import NotificationRead
from projecthub.services import notification_service

router = APIRouter(prefix="/me", tags=["notifications"])


@router.get("/notifications")
def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Get the caller's notifications, newest first."""
    notifications = notification_service.get_notifications(
        db, identity.user_id, unread_only=unread_only, limit=limit, offset=offset
    )
    unread_count = notification_service.get_unread_count(db, identity.user_id)
    return {
        "success": True,
        "items": [NotificationRead.model_validate(n).model_dump(mode="json") for n in notifications],
        "unread_count": unread_count,
    }


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    notification = notification_service.mark_read(db, notification_id, identity.user_id)
    if not notification:
        raise NotFoundError("Notification not found")
    return {
        "success": True,
        "notification": NotificationRead.model_validate(notification).model_dump(mode="json"),
    }


@router.post("/notifications/read-all")
def mark_all_read(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    count = notification_service.mark_all_read(db, identity.user_id)
    return {"success": True, "marked_read": count}

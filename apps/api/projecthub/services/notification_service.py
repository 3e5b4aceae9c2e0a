"""
Notification Service - multi-channel fan-out and in-app notification reads.

Each channel is an independent handler; one channel failing never prevents
the others from running, and every channel's outcome is reported back.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from projecthub.core.errors import AppError, NotFoundError, ValidationError
from projecthub.db.enums import Channel
from projecthub.db.models import Notification, User
from projecthub.services import email_templates
from projecthub.services.email_service import EmailSender

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = (Channel.IN_APP, Channel.EMAIL)


@dataclass
class NotificationRequest:
    user_id: UUID
    type: str
    title: str
    message: str
    link: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    organization_id: UUID | None = None


@dataclass
class ChannelResult:
    success: bool
    id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.id:
            result["id"] = self.id
        if self.error:
            result["error"] = self.error
        return result


# =============================================================================
# Channel handlers
# =============================================================================

def _deliver_in_app(db: Session, user: User, request: NotificationRequest, sender: EmailSender) -> ChannelResult:
    notification = create_notification(
        db,
        user_id=user.id,
        type=request.type,
        title=request.title,
        message=request.message,
        link=request.link,
        metadata=request.metadata,
        org_id=request.organization_id,
    )
    return ChannelResult(success=True, id=str(notification.id))


def _deliver_email(db: Session, user: User, request: NotificationRequest, sender: EmailSender) -> ChannelResult:
    if not user.email:
        return ChannelResult(success=False, error="User has no email address")
    message = email_templates.render_notification(
        to=user.email,
        notification_type=request.type,
        title=request.title,
        message=request.message,
        link=request.link,
    )
    message_id = sender.send(message)
    return ChannelResult(success=True, id=message_id)


def _deliver_push(db: Session, user: User, request: NotificationRequest, sender: EmailSender) -> ChannelResult:
    return ChannelResult(success=False, error="Push notifications not implemented")


ChannelHandler = Callable[[Session, User, NotificationRequest, EmailSender], ChannelResult]

CHANNEL_HANDLERS: dict[Channel, ChannelHandler] = {
    Channel.IN_APP: _deliver_in_app,
    Channel.EMAIL: _deliver_email,
    Channel.PUSH: _deliver_push,
}


def parse_channels(channels: list[str] | None) -> list[Channel]:
    if not channels:
        return list(DEFAULT_CHANNELS)
    parsed: list[Channel] = []
    for value in channels:
        try:
            channel = Channel(value)
        except ValueError:
            raise ValidationError(f"Unknown notification channel '{value}'")
        if channel not in parsed:
            parsed.append(channel)
    return parsed


def send_notification(
    db: Session,
    request: NotificationRequest,
    sender: EmailSender,
    channels: list[str] | None = None,
) -> dict[str, dict[str, Any]]:
    """
    Deliver a notification on each requested channel.

    Returns ``{channel: {"success": bool, "id"?: str, "error"?: str}}``.

    Raises:
        ValidationError: Missing fields or unknown channel
        NotFoundError: User does not exist
    """
    if not request.user_id or not request.type or not request.title or not request.message:
        raise ValidationError("Missing required fields: userId, type, title, message")

    selected = parse_channels(channels)

    user = db.query(User).filter(User.id == request.user_id).first()
    if not user:
        raise NotFoundError("User not found")

    results: dict[str, dict[str, Any]] = {}
    for channel in selected:
        handler = CHANNEL_HANDLERS[channel]
        try:
            outcome = handler(db, user, request, sender)
        except AppError as exc:
            db.rollback()
            logger.warning("Notification channel %s failed for user=%s: %s", channel.value, user.id, exc.message)
            outcome = ChannelResult(success=False, error=exc.message)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Notification channel %s failed for user=%s", channel.value, user.id)
            outcome = ChannelResult(success=False, error="Failed to store notification")
        results[channel.value] = outcome.to_dict()

    logger.info(
        "Notification sent user=%s type=%s channels=%s",
        user.id,
        request.type,
        {name: r["success"] for name, r in results.items()},
    )
    return results


# =============================================================================
# In-app notifications
# =============================================================================

def create_notification(
    db: Session,
    user_id: UUID,
    type: str,
    title: str,
    message: str,
    link: str | None = None,
    metadata: dict[str, Any] | None = None,
    org_id: UUID | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        organization_id=org_id,
        type=type,
        title=title,
        message=message,
        link=link,
        extra=dict(metadata or {}),
        read=False,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def get_notifications(
    db: Session,
    user_id: UUID,
    unread_only: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> list[Notification]:
    """Get notifications for user, newest first."""
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()


def get_unread_count(db: Session, user_id: UUID) -> int:
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.read.is_(False),
    ).count()


def mark_read(db: Session, notification_id: UUID, user_id: UUID) -> Notification | None:
    """Mark a notification as read (scoped to its owner)."""
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).first()

    if notification and not notification.read:
        notification.read = True
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)

    return notification


def mark_all_read(db: Session, user_id: UUID) -> int:
    """Mark all notifications as read. Returns count updated."""
    count = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.read.is_(False),
    ).update(
        {Notification.read: True, Notification.read_at: datetime.now(timezone.utc)},
        synchronize_session=False,
    )
    db.commit()
    return count

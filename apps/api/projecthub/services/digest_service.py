"""Daily/weekly activity digest emails."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from projecthub.core.errors import TransportError, ValidationError
from projecthub.db.enums import TaskStatus
from projecthub.db.models import Notification, Project, Task, User
from projecthub.services import email_templates
from projecthub.services.email_service import EmailSender

logger = logging.getLogger(__name__)

DIGEST_WINDOWS = {"daily": 1, "weekly": 7}
MAX_ITEMS = 20


def digest_window(digest_type: str, now: datetime) -> datetime:
    if digest_type not in DIGEST_WINDOWS:
        raise ValidationError("digestType must be 'daily' or 'weekly'")
    return now - timedelta(days=DIGEST_WINDOWS[digest_type])


def collect_activity(db: Session, user: User, since: datetime) -> dict[str, Any]:
    task_rows = (
        db.query(Task, Project.name)
        .outerjoin(Project, Project.id == Task.project_id)
        .filter(Task.assigned_to_id == user.id, Task.updated_at >= since)
        .order_by(Task.updated_at.desc())
        .all()
    )
    notifications = (
        db.query(Notification)
        .filter(
            Notification.user_id == user.id,
            Notification.read.is_(False),
            Notification.created_at >= since,
        )
        .order_by(Notification.created_at.desc())
        .all()
    )

    stats = {"todo": 0, "in_progress": 0, "completed": 0}
    for task, _ in task_rows:
        if task.status == TaskStatus.TODO.value:
            stats["todo"] += 1
        elif task.status == TaskStatus.IN_PROGRESS.value:
            stats["in_progress"] += 1
        elif task.status == TaskStatus.DONE.value:
            stats["completed"] += 1

    return {
        "tasks": [
            {
                "id": str(task.id),
                "title": task.title,
                "priority": task.priority,
                "project_name": project_name,
                "due_date": task.due_date.strftime("%Y-%m-%d") if task.due_date else None,
            }
            for task, project_name in task_rows[:MAX_ITEMS]
        ],
        "notifications": [
            {"title": n.title, "message": n.message} for n in notifications[:MAX_ITEMS]
        ],
        "task_count": len(task_rows),
        "notification_count": len(notifications),
        "stats": stats,
    }


def send_email_digests(
    db: Session,
    sender: EmailSender,
    digest_type: str = "daily",
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Send a digest to every user with activity in the window.

    Users without activity get nothing; one user's failure does not stop the rest.
    """
    now = now or datetime.now(timezone.utc)
    since = digest_window(digest_type, now)
    users = db.query(User).filter(User.email.is_not(None)).all()

    sent = failed = 0
    for user in users:
        try:
            activity = collect_activity(db, user, since)
            if not activity["task_count"] and not activity["notification_count"]:
                continue
            message = email_templates.render_digest(
                to=user.email,
                name=user.first_name or user.full_name,
                digest_type=digest_type,
                tasks=activity["tasks"],
                notifications=activity["notifications"],
                stats=activity["stats"],
            )
            sender.send(message)
            sent += 1
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Digest query failed for user=%s", user.id)
            failed += 1
        except TransportError as exc:
            logger.warning("Digest email failed for user=%s: %s", user.id, exc.message)
            failed += 1
        except Exception:
            logger.exception("Digest failed for user=%s", user.id)
            failed += 1

    summary = {
        "digest_type": digest_type,
        "users_considered": len(users),
        "digests_sent": sent,
        "failed": failed,
    }
    logger.info("Email digests: %s", summary)
    return summary

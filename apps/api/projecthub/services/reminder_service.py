"""Daily due-date reminder emails, one per assignee."""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from projecthub.db.enums import TaskStatus
from projecthub.db.models import Project, Task, User
from projecthub.jobs.utils import end_of_day
from projecthub.services import email_templates
from projecthub.services.email_service import EmailSender, send_best_effort

logger = logging.getLogger(__name__)

REMINDER_WINDOW_DAYS = 7


def urgency_bucket(due_date: datetime, now: datetime) -> str:
    """tomorrow (overdue included), three_days, or week."""
    if due_date <= end_of_day(now + timedelta(days=1)):
        return "tomorrow"
    if due_date <= end_of_day(now + timedelta(days=3)):
        return "three_days"
    return "week"


def find_upcoming_tasks(db: Session, now: datetime) -> list[tuple[Task, User, str | None]]:
    """Open, assigned tasks due before the end of the reminder window."""
    horizon = end_of_day(now + timedelta(days=REMINDER_WINDOW_DAYS))
    return (
        db.query(Task, User, Project.name)
        .join(User, User.id == Task.assigned_to_id)
        .outerjoin(Project, Project.id == Task.project_id)
        .filter(
            Task.status != TaskStatus.DONE.value,
            Task.due_date.is_not(None),
            Task.due_date <= horizon,
        )
        .order_by(Task.due_date)
        .all()
    )


def _task_summary(task: Task, project_name: str | None) -> dict[str, Any]:
    return {
        "id": str(task.id),
        "title": task.title,
        "priority": task.priority,
        "project_name": project_name,
        "due_date": task.due_date.strftime("%Y-%m-%d") if task.due_date else None,
    }


def send_due_date_reminders(
    db: Session,
    sender: EmailSender,
    now: datetime | None = None,
) -> dict[str, int]:
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    rows = find_upcoming_tasks(db, now)

    per_user: dict[Any, dict[str, Any]] = {}
    for task, user, project_name in rows:
        entry = per_user.setdefault(user.id, {"user": user, "groups": defaultdict(list)})
        entry["groups"][urgency_bucket(task.due_date, now)].append(_task_summary(task, project_name))

    sent = failed = 0
    for entry in per_user.values():
        user = entry["user"]
        if not user.email:
            continue
        try:
            message = email_templates.render_due_date_reminder(
                to=user.email,
                name=user.first_name or user.full_name,
                groups=dict(entry["groups"]),
            )
            delivered = send_best_effort(sender, message, context=f"due-date reminder user={user.id}")
        except Exception:
            logger.exception("Due-date reminder failed for user=%s", user.id)
            delivered = False
        if delivered:
            sent += 1
        else:
            failed += 1

    summary = {
        "total_tasks": len(rows),
        "users_notified": len(per_user),
        "emails_sent": sent,
        "emails_failed": failed,
    }
    logger.info("Due-date reminders: %s", summary)
    return summary

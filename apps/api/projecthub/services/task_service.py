"""Task service - task creation, listing, and status changes."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from projecthub.core.errors import NotFoundError, ValidationError
from projecthub.db.enums import TaskPriority, TaskStatus
from projecthub.db.models import OrganizationMember, Task
from projecthub.services import recurrence_service


def coerce_status(value: str | None) -> str:
    if not value:
        return TaskStatus.TODO.value
    try:
        return TaskStatus(value.upper()).value
    except ValueError:
        raise ValidationError(f"Invalid status '{value}'")


def coerce_priority(value: str | None) -> str:
    if not value:
        return TaskPriority.MEDIUM.value
    try:
        return TaskPriority(value.upper()).value
    except ValueError:
        raise ValidationError(f"Invalid priority '{value}'")


def ensure_assignee_in_org(db: Session, org_id: UUID, user_id: UUID | None) -> None:
    if user_id is None:
        return
    exists = db.query(OrganizationMember.id).filter(
        OrganizationMember.organization_id == org_id,
        OrganizationMember.user_id == user_id,
    ).first()
    if not exists:
        raise ValidationError("Assignee must be a member of the organization")


def build_task(
    *,
    org_id: UUID,
    project_id: UUID,
    created_by: UUID | None,
    title: str | None,
    description: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    assigned_to_id: UUID | None = None,
    tags: list[str] | None = None,
    start_date: datetime | None = None,
    due_date: datetime | None = None,
    estimated_hours: float | None = None,
) -> Task:
    """Validate fields and return an unsaved Task."""
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")

    status_value = coerce_status(status)
    return Task(
        organization_id=org_id,
        project_id=project_id,
        title=title,
        description=description,
        status=status_value,
        priority=coerce_priority(priority),
        assigned_to_id=assigned_to_id,
        created_by_id=created_by,
        tags=[t.strip() for t in (tags or []) if t and t.strip()],
        start_date=start_date,
        due_date=due_date,
        estimated_hours=estimated_hours,
        completed_at=datetime.now(timezone.utc) if status_value == TaskStatus.DONE.value else None,
    )


def create_task(
    db: Session,
    org_id: UUID,
    project_id: UUID,
    created_by: UUID,
    title: str,
    recurrence: dict[str, Any] | None = None,
    **fields: Any,
) -> Task:
    """
    Create a task. With ``recurrence`` the task becomes a template whose first
    occurrence defaults to its due date (or now).
    """
    ensure_assignee_in_org(db, org_id, fields.get("assigned_to_id"))
    task = build_task(
        org_id=org_id,
        project_id=project_id,
        created_by=created_by,
        title=title,
        **fields,
    )
    if recurrence:
        task.recurrence = recurrence_service.build_recurrence(
            recurrence.get("frequency"),
            recurrence.get("interval", 1),
            recurrence.get("next_occurrence") or task.due_date,
        )
        task.is_recurring = True

    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def list_tasks(
    db: Session,
    org_id: UUID,
    project_id: UUID,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Task]:
    query = db.query(Task).filter(
        Task.organization_id == org_id,
        Task.project_id == project_id,
    )
    if status:
        query = query.filter(Task.status == coerce_status(status))
    return query.order_by(Task.created_at.desc()).offset(offset).limit(limit).all()


def get_task_or_404(db: Session, org_id: UUID, task_id: UUID) -> Task:
    task = db.query(Task).filter(Task.id == task_id, Task.organization_id == org_id).first()
    if not task:
        raise NotFoundError("Task not found")
    return task


def update_status(db: Session, org_id: UUID, task_id: UUID, status: str) -> Task:
    task = get_task_or_404(db, org_id, task_id)
    task.status = coerce_status(status)
    task.completed_at = (
        datetime.now(timezone.utc) if task.status == TaskStatus.DONE.value else None
    )
    db.commit()
    db.refresh(task)
    return task

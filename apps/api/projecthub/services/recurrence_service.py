"""Recurring task templates: schedule math and the daily materializer."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from projecthub.core.errors import ValidationError
from projecthub.db.enums import RecurrenceFrequency, TaskStatus
from projecthub.db.models import Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recurrence:
    frequency: RecurrenceFrequency
    interval: int
    next_occurrence: datetime
    last_created: datetime | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "interval": self.interval,
            "nextOccurrence": isoformat(self.next_occurrence),
            "lastCreated": isoformat(self.last_created) if self.last_created else None,
        }


def isoformat(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_datetime(value: Any) -> datetime:
    """Parse an ISO 8601 value; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid datetime: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_recurrence(data: dict[str, Any] | None) -> Recurrence:
    """
    Parse stored recurrence JSON.

    Raises:
        ValueError: Missing or malformed frequency, interval, or nextOccurrence
    """
    if not data:
        raise ValueError("Recurrence data missing")
    frequency = RecurrenceFrequency(str(data.get("frequency", "")).upper())
    interval = int(data.get("interval") or 1)
    if interval < 1:
        raise ValueError("Recurrence interval must be at least 1")
    next_occurrence = parse_datetime(data.get("nextOccurrence"))
    last_created = data.get("lastCreated")
    return Recurrence(
        frequency=frequency,
        interval=interval,
        next_occurrence=next_occurrence,
        last_created=parse_datetime(last_created) if last_created else None,
    )


def build_recurrence(
    frequency: str,
    interval: int = 1,
    next_occurrence: datetime | None = None,
) -> dict[str, Any]:
    """Validated recurrence JSON for a new template."""
    if isinstance(frequency, RecurrenceFrequency):
        frequency = frequency.value
    try:
        freq = RecurrenceFrequency(str(frequency or "").upper())
    except ValueError:
        raise ValidationError(f"Invalid recurrence frequency '{frequency}'")
    if not isinstance(interval, int) or interval < 1:
        raise ValidationError("Recurrence interval must be a positive integer")
    start = next_occurrence or datetime.now(timezone.utc)
    return Recurrence(freq, interval, parse_datetime(start)).to_json()


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping to the last day of shorter months."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_occurrence_after(current: datetime, frequency: RecurrenceFrequency, interval: int) -> datetime:
    if frequency == RecurrenceFrequency.DAILY:
        return current + timedelta(days=interval)
    if frequency == RecurrenceFrequency.WEEKLY:
        return current + timedelta(days=7 * interval)
    if frequency == RecurrenceFrequency.MONTHLY:
        return add_months(current, interval)
    return add_months(current, 12 * interval)


def is_due(recurrence: Recurrence, now: datetime) -> bool:
    """Due when the next occurrence falls on or before today (UTC calendar days)."""
    return recurrence.next_occurrence.date() <= now.astimezone(timezone.utc).date()


def build_occurrence(template: Task, recurrence: Recurrence) -> Task:
    """New TODO task for the template's current occurrence."""
    due_date = None
    if template.due_date is not None:
        offset_days = (template.due_date - recurrence.next_occurrence).days
        due_date = recurrence.next_occurrence + timedelta(days=offset_days)

    return Task(
        organization_id=template.organization_id,
        project_id=template.project_id,
        title=template.title,
        description=template.description,
        status=TaskStatus.TODO.value,
        priority=template.priority,
        assigned_to_id=template.assigned_to_id,
        created_by_id=template.created_by_id,
        tags=list(template.tags or []),
        estimated_hours=template.estimated_hours,
        due_date=due_date,
        parent_task_id=template.id,
        is_recurring=False,
    )


def materialize_recurring_tasks(db: Session, now: datetime | None = None) -> dict[str, Any]:
    """
    Create the due occurrence of every recurring template.

    At most one occurrence per template per run: a template that is several
    periods behind advances by a single step. Each template commits on its
    own; one failing is logged and does not stop the others.
    """
    now = now or datetime.now(timezone.utc)
    templates = db.query(Task).filter(Task.is_recurring.is_(True)).all()

    created: list[dict[str, str]] = []
    failed: list[dict[str, str]] = []
    skipped = 0

    for template in templates:
        template_id = template.id
        try:
            recurrence = parse_recurrence(template.recurrence)
        except (ValueError, TypeError) as exc:
            logger.warning("Skipping template=%s with invalid recurrence: %s", template_id, exc)
            skipped += 1
            continue

        if not is_due(recurrence, now):
            continue

        try:
            occurrence = build_occurrence(template, recurrence)
            db.add(occurrence)
            advanced = Recurrence(
                frequency=recurrence.frequency,
                interval=recurrence.interval,
                next_occurrence=next_occurrence_after(
                    recurrence.next_occurrence, recurrence.frequency, recurrence.interval
                ),
                last_created=now,
            )
            template.recurrence = advanced.to_json()
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to materialize recurring template=%s", template_id)
            failed.append({"template_id": str(template_id), "error": exc.__class__.__name__})
            continue

        created.append({"template_id": str(template_id), "task_id": str(occurrence.id)})

    logger.info(
        "Recurring tasks processed templates=%d created=%d failed=%d skipped=%d",
        len(templates), len(created), len(failed), skipped,
    )
    return {
        "templates": len(templates),
        "created": created,
        "failed": failed,
        "skipped": skipped,
    }

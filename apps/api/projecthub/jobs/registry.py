"""Scheduled job registry."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

from sqlalchemy.orm import Session

from projecthub.core.errors import NotFoundError
from projecthub.core.structured_logging import build_log_context
from projecthub.jobs import scheduled
from projecthub.services.email_service import EmailSender

logger = logging.getLogger(__name__)

JobHandler = Callable[[Session, EmailSender, datetime], Awaitable[dict[str, Any]]]

# Suggested cron: reminders, recurring tasks and invitation expiry daily;
# the daily digest at 08:00 UTC and the weekly digest on Mondays.
JOB_HANDLERS: Mapping[str, JobHandler] = {
    "due-date-reminders": scheduled.process_due_date_reminders,
    "recurring-tasks": scheduled.process_recurring_tasks,
    "email-digest-daily": scheduled.process_daily_digest,
    "email-digest-weekly": scheduled.process_weekly_digest,
    "expire-invitations": scheduled.process_expire_invitations,
}


def resolve_job_handler(job_name: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_name)
    if handler is None:
        raise NotFoundError(f"Unknown job: {job_name}")
    return handler


async def run_job(
    job_name: str,
    db: Session,
    sender: EmailSender,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Run one scheduled job and log its summary."""
    handler = resolve_job_handler(job_name)
    now = now or datetime.now(timezone.utc)
    logger.info("Scheduled job started: %s", job_name, extra=build_log_context(job=job_name))
    summary = await handler(db, sender, now)
    logger.info(
        "Scheduled job finished: %s summary=%s", job_name, summary,
        extra=build_log_context(job=job_name),
    )
    return summary

"""Scheduled job handlers (run by cron via the internal API or the CLI)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from projecthub.services import (
    digest_service, invite_service, recurrence_service, reminder_service,
)
from projecthub.services.email_service import EmailSender

logger = logging.getLogger(__name__)


async def process_due_date_reminders(db: Session, sender: EmailSender, now: datetime) -> dict[str, Any]:
    return reminder_service.send_due_date_reminders(db, sender, now)


async def process_recurring_tasks(db: Session, sender: EmailSender, now: datetime) -> dict[str, Any]:
    return recurrence_service.materialize_recurring_tasks(db, now)


async def process_daily_digest(db: Session, sender: EmailSender, now: datetime) -> dict[str, Any]:
    return digest_service.send_email_digests(db, sender, "daily", now)


async def process_weekly_digest(db: Session, sender: EmailSender, now: datetime) -> dict[str, Any]:
    return digest_service.send_email_digests(db, sender, "weekly", now)


async def process_expire_invitations(db: Session, sender: EmailSender, now: datetime) -> dict[str, Any]:
    return {"expired": invite_service.expire_stale_invitations(db, now)}

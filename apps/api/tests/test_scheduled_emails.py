"""Tests for due-date reminders and activity digests."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from projecthub.core.errors import ValidationError
from projecthub.db.enums import Role, TaskStatus
from projecthub.db.models import Task
from projecthub.services import (
    digest_service, notification_service, org_service, reminder_service,
)

NOW = datetime(2024, 6, 3, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def project(db: Session, owner, test_org):
    return org_service.create_project(db, test_org.id, owner.user_id, "Launch")


class FlakySender:
    """Raises a non-transport error on the first send, then records."""

    def __init__(self):
        self.calls = 0
        self.sent = []

    def send(self, message):
        self.calls += 1
        if self.calls == 1:
            raise ValueError("unexpected provider response")
        self.sent.append(message)
        return f"msg-{self.calls}"


def _task(db: Session, project, title: str, **fields) -> Task:
    task = Task(
        organization_id=project.organization_id,
        project_id=project.id,
        title=title,
        **fields,
    )
    db.add(task)
    db.commit()
    return task


# =============================================================================
# Due-date reminders
# =============================================================================

def test_urgency_buckets():
    assert reminder_service.urgency_bucket(NOW - timedelta(days=2), NOW) == "tomorrow"
    assert reminder_service.urgency_bucket(NOW + timedelta(days=1, hours=10), NOW) == "tomorrow"
    assert reminder_service.urgency_bucket(NOW + timedelta(days=3), NOW) == "three_days"
    assert reminder_service.urgency_bucket(NOW + timedelta(days=6), NOW) == "week"


def test_reminders_group_open_tasks_per_assignee(db: Session, project, test_org, add_member, sender):
    assignee = add_member(test_org, Role.MEMBER, first_name="Dana")
    _task(db, project, "Tomorrow", assigned_to_id=assignee.user_id, due_date=NOW + timedelta(days=1))
    _task(db, project, "Soon", assigned_to_id=assignee.user_id, due_date=NOW + timedelta(days=3))
    _task(db, project, "This week", assigned_to_id=assignee.user_id, due_date=NOW + timedelta(days=6))
    _task(db, project, "Later", assigned_to_id=assignee.user_id, due_date=NOW + timedelta(days=10))
    _task(
        db, project, "Finished",
        assigned_to_id=assignee.user_id,
        due_date=NOW + timedelta(days=1),
        status=TaskStatus.DONE.value,
    )
    _task(db, project, "Unassigned", due_date=NOW + timedelta(days=1))

    summary = reminder_service.send_due_date_reminders(db, sender, NOW)

    assert summary == {"total_tasks": 3, "users_notified": 1, "emails_sent": 1, "emails_failed": 0}
    [message] = sender.sent
    assert message.to == [assignee.email]
    assert message.subject == "⏰ You have 3 tasks due soon"
    assert "Hi Dana" in message.html
    assert "Due tomorrow or overdue (1)" in message.html
    assert "Later" not in message.html


def test_reminder_email_failure_is_counted(db: Session, project, test_org, add_member, sender):
    assignee = add_member(test_org)
    _task(db, project, "Tomorrow", assigned_to_id=assignee.user_id, due_date=NOW + timedelta(days=1))
    sender.fail = True

    summary = reminder_service.send_due_date_reminders(db, sender, NOW)

    assert summary["emails_sent"] == 0
    assert summary["emails_failed"] == 1
    assert summary["users_notified"] == 1


def test_reminders_count_distinct_assignees(db: Session, project, test_org, add_member, sender):
    first = add_member(test_org)
    second = add_member(test_org)
    _task(db, project, "A", assigned_to_id=first.user_id, due_date=NOW + timedelta(days=1))
    _task(db, project, "B", assigned_to_id=first.user_id, due_date=NOW + timedelta(days=2))
    _task(db, project, "C", assigned_to_id=second.user_id, due_date=NOW + timedelta(days=5))

    summary = reminder_service.send_due_date_reminders(db, sender, NOW)

    assert summary == {"total_tasks": 3, "users_notified": 2, "emails_sent": 2, "emails_failed": 0}


def test_reminder_unexpected_sender_error_is_isolated(db: Session, project, test_org, add_member):
    first = add_member(test_org)
    second = add_member(test_org)
    _task(db, project, "A", assigned_to_id=first.user_id, due_date=NOW + timedelta(days=1))
    _task(db, project, "B", assigned_to_id=second.user_id, due_date=NOW + timedelta(days=1))
    flaky = FlakySender()

    summary = reminder_service.send_due_date_reminders(db, flaky, NOW)

    assert summary["emails_sent"] == 1
    assert summary["emails_failed"] == 1
    assert len(flaky.sent) == 1


# =============================================================================
# Digests
# =============================================================================

def test_daily_digest_only_for_users_with_activity(
    db: Session, project, owner, test_org, add_member, sender
):
    busy = add_member(test_org, Role.MEMBER, first_name="Busy")
    _task(
        db, project, "Fresh work",
        assigned_to_id=busy.user_id,
        status=TaskStatus.IN_PROGRESS.value,
        updated_at=NOW - timedelta(hours=3),
    )
    _task(
        db, project, "Old work",
        assigned_to_id=busy.user_id,
        updated_at=NOW - timedelta(days=3),
    )

    summary = digest_service.send_email_digests(db, sender, "daily", NOW)

    assert summary["digests_sent"] == 1
    assert summary["users_considered"] == 2
    [message] = sender.sent
    assert message.to == [busy.email]
    assert message.subject == "Your Daily ProjectHub Digest"
    assert "Fresh work" in message.html
    assert "Old work" not in message.html


def test_weekly_digest_includes_unread_notifications(db: Session, owner, test_org, sender):
    notification_service.create_notification(db, owner.user_id, "MENTION", "Ping", "You were mentioned")

    summary = digest_service.send_email_digests(db, sender, "weekly")

    assert summary["digests_sent"] == 1
    assert sender.sent[0].subject == "Your Weekly ProjectHub Digest"
    assert "You were mentioned" in sender.sent[0].html


def test_digest_failures_are_counted_per_user(db: Session, owner, test_org, sender):
    notification_service.create_notification(db, owner.user_id, "MENTION", "Ping", "Hello")
    sender.fail = True

    summary = digest_service.send_email_digests(db, sender, "daily")

    assert summary["digests_sent"] == 0
    assert summary["failed"] == 1


def test_digest_unexpected_sender_error_does_not_stop_batch(db: Session, owner, test_org, add_member):
    member = add_member(test_org)
    notification_service.create_notification(db, owner.user_id, "MENTION", "Ping", "Hello")
    notification_service.create_notification(db, member.user_id, "MENTION", "Ping", "Hello")
    flaky = FlakySender()

    summary = digest_service.send_email_digests(db, flaky, "daily")

    assert summary["digests_sent"] == 1
    assert summary["failed"] == 1
    assert len(flaky.sent) == 1


def test_digest_rejects_unknown_type(db: Session, sender):
    with pytest.raises(ValidationError):
        digest_service.send_email_digests(db, sender, "monthly")

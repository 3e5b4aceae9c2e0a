"""Personal data export and erasure for a single user."""

import json
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from projecthub.core.errors import ConflictError, NotFoundError, PermissionDeniedError
from projecthub.db.enums import InvitationStatus, Role
from projecthub.db.models import (
    Invitation, Notification, Organization, OrganizationMember, Task, User,
)
from projecthub.services import email_templates
from projecthub.services.email_service import EmailSender, send_best_effort
from projecthub.services.membership_service import count_owners

logger = logging.getLogger(__name__)


def deletion_confirmation(user_id: UUID) -> str:
    return f"DELETE_{user_id}_CONFIRMED"


def require_self(requesting_user_id: UUID, user_id: UUID) -> None:
    if requesting_user_id != user_id:
        raise PermissionDeniedError("You can only access your own data")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _get_user_or_404(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


# =============================================================================
# Export
# =============================================================================

def collect_user_data(db: Session, user: User) -> dict[str, Any]:
    memberships = (
        db.query(OrganizationMember, Organization.name)
        .join(Organization, Organization.id == OrganizationMember.organization_id)
        .filter(OrganizationMember.user_id == user.id)
        .all()
    )
    tasks = db.query(Task).filter(
        or_(Task.created_by_id == user.id, Task.assigned_to_id == user.id)
    ).all()
    invitations = db.query(Invitation).filter(Invitation.invited_by == user.id).all()
    notifications = (
        db.query(Notification)
        .filter(Notification.user_id == user.id)
        .order_by(Notification.created_at.desc())
        .all()
    )

    return {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "profile": {
            "id": str(user.id),
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "created_at": _iso(user.created_at),
        },
        "memberships": [
            {
                "organization_id": str(m.organization_id),
                "organization_name": org_name,
                "role": m.role,
                "joined_at": _iso(m.joined_at),
            }
            for m, org_name in memberships
        ],
        "tasks": [
            {
                "id": str(t.id),
                "organization_id": str(t.organization_id),
                "project_id": str(t.project_id),
                "title": t.title,
                "description": t.description,
                "status": t.status,
                "priority": t.priority,
                "created_by_me": t.created_by_id == user.id,
                "assigned_to_me": t.assigned_to_id == user.id,
                "due_date": _iso(t.due_date),
                "created_at": _iso(t.created_at),
            }
            for t in tasks
        ],
        "invitations_sent": [
            {
                "organization_id": str(i.organization_id),
                "email": i.email,
                "role": i.role,
                "status": i.status,
                "created_at": _iso(i.created_at),
            }
            for i in invitations
        ],
        "notifications": [
            {
                "type": n.type,
                "title": n.title,
                "message": n.message,
                "read": n.read,
                "created_at": _iso(n.created_at),
            }
            for n in notifications
        ],
    }


def export_user_data(
    db: Session,
    requesting_user_id: UUID,
    user_id: UUID,
    sender: EmailSender,
) -> dict[str, Any]:
    """Aggregate the user's data and email it to them as a JSON attachment."""
    require_self(requesting_user_id, user_id)
    user = _get_user_or_404(db, user_id)

    data = collect_user_data(db, user)
    summary = {
        "memberships": len(data["memberships"]),
        "tasks": len(data["tasks"]),
        "invitations_sent": len(data["invitations_sent"]),
        "notifications": len(data["notifications"]),
    }
    message = email_templates.render_data_export(
        to=user.email,
        name=user.first_name or user.full_name,
        summary=summary,
        export_json=json.dumps(data, indent=2),
    )
    emailed = send_best_effort(sender, message, context=f"data export user={user.id}")

    logger.info("User data exported user=%s emailed=%s", user.id, emailed)
    return {"summary": summary, "emailed": emailed, "data": data}


# =============================================================================
# Erasure
# =============================================================================

def sole_owner_organizations(db: Session, user_id: UUID) -> list[UUID]:
    owned = db.query(OrganizationMember.organization_id).filter(
        OrganizationMember.user_id == user_id,
        OrganizationMember.role == Role.OWNER.value,
    ).all()
    return [org_id for (org_id,) in owned if count_owners(db, org_id) <= 1]


def delete_user_data(
    db: Session,
    requesting_user_id: UUID,
    user_id: UUID,
    confirmation: str | None,
    sender: EmailSender,
) -> dict[str, int]:
    """
    Erase a user's personal data.

    Memberships are removed (with user counters decremented), tasks keep
    their content but lose the user's name, notifications and pending
    invitations to the user's address are deleted, then the profile itself.

    Raises:
        PermissionDeniedError: Not the user, or wrong confirmation string
        NotFoundError: No profile
        ConflictError: User is the only owner of an organization
    """
    require_self(requesting_user_id, user_id)
    if confirmation != deletion_confirmation(user_id):
        raise PermissionDeniedError(
            "Confirmation required. Send confirmation: DELETE_<userId>_CONFIRMED"
        )

    user = _get_user_or_404(db, user_id)
    blocking = sole_owner_organizations(db, user_id)
    if blocking:
        raise ConflictError(
            "Transfer ownership before deleting your account",
            details={"organization_ids": [str(org_id) for org_id in blocking]},
        )

    email = user.email
    name = user.first_name or user.full_name

    memberships = db.query(OrganizationMember).filter(OrganizationMember.user_id == user_id).all()
    for membership in memberships:
        db.query(Organization).filter(
            Organization.id == membership.organization_id,
            Organization.current_users > 0,
        ).update(
            {Organization.current_users: Organization.current_users - 1},
            synchronize_session=False,
        )
        db.delete(membership)

    created = db.query(Task).filter(Task.created_by_id == user_id).update(
        {Task.created_by_id: None}, synchronize_session=False
    )
    assigned = db.query(Task).filter(Task.assigned_to_id == user_id).update(
        {Task.assigned_to_id: None}, synchronize_session=False
    )
    notifications = db.query(Notification).filter(Notification.user_id == user_id).delete(
        synchronize_session=False
    )
    invitations = db.query(Invitation).filter(
        Invitation.email == email,
        Invitation.status == InvitationStatus.PENDING.value,
    ).delete(synchronize_session=False)
    db.query(Organization).filter(Organization.owner_id == user_id).update(
        {Organization.owner_id: None}, synchronize_session=False
    )
    db.delete(user)
    db.commit()

    send_best_effort(
        sender,
        email_templates.render_account_deleted(to=email, name=name),
        context=f"account deletion user={user_id}",
    )

    summary = {
        "memberships": len(memberships),
        "tasks_anonymized": created + assigned,
        "notifications": notifications,
        "invitations": invitations,
    }
    logger.info("User data deleted user=%s summary=%s", user_id, summary)
    return summary

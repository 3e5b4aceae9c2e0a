"""Invitation lifecycle: issue, redeem, list, and expire.

An invitation moves PENDING -> ACCEPTED or PENDING -> EXPIRED and never
leaves either terminal state. Redemption writes the invitation, the new
membership, and the organization's user counter in one transaction; every
write is conditional so concurrent redemptions cannot double-count.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from projecthub.core.config import settings
from projecthub.core.errors import (
    ConflictError, InvitationExpiredError, NotFoundError, PermissionDeniedError,
    ValidationError,
)
from projecthub.core.security import generate_token
from projecthub.db.enums import ROLES_CAN_INVITE, InvitationStatus, Role
from projecthub.db.models import Invitation, Organization, OrganizationMember, User
from projecthub.services import membership_service, org_service

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USER_LIMIT_MESSAGE = "User limit reached. Please upgrade your plan."


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_expired(invitation: Invitation, now: datetime | None = None) -> bool:
    return (now or _utcnow()) > invitation.expires_at


def get_by_token(db: Session, token: str) -> Invitation | None:
    return db.query(Invitation).filter(Invitation.token == token).first()


def find_pending_for_email(
    db: Session,
    email: str,
    org_id: UUID | None = None,
) -> Invitation | None:
    """Most recent PENDING invitation for an email, optionally within one org."""
    query = db.query(Invitation).filter(
        Invitation.email == normalize_email(email),
        Invitation.status == InvitationStatus.PENDING.value,
    )
    if org_id is not None:
        query = query.filter(Invitation.organization_id == org_id)
    return query.order_by(Invitation.created_at.desc()).first()


def list_invitations(db: Session, org_id: UUID) -> list[Invitation]:
    return (
        db.query(Invitation)
        .filter(Invitation.organization_id == org_id)
        .order_by(Invitation.created_at.desc())
        .limit(100)
        .all()
    )


def mark_expired(db: Session, invitation: Invitation, now: datetime | None = None) -> bool:
    """PENDING -> EXPIRED. Returns False when another writer got there first."""
    updated = db.query(Invitation).filter(
        Invitation.id == invitation.id,
        Invitation.status == InvitationStatus.PENDING.value,
    ).update(
        {
            Invitation.status: InvitationStatus.EXPIRED.value,
            Invitation.updated_at: now or _utcnow(),
        },
        synchronize_session=False,
    )
    return bool(updated)


# =============================================================================
# Issue
# =============================================================================

@dataclass
class IssuedInvitation:
    invitation: Invitation
    organization: Organization
    inviter: OrganizationMember


def create_invitation(
    db: Session,
    org_id: UUID,
    invited_by: UUID,
    email: str,
    role: Role | str | None = None,
) -> IssuedInvitation:
    """
    Issue a new invitation.

    Raises:
        ValidationError: Missing/malformed email or unknown/OWNER role
        PermissionDeniedError: Caller can't invite, or user limit reached
        NotFoundError: Organization missing
        ConflictError: Pending invitation or membership already exists
    """
    email = normalize_email(email)
    if not email:
        raise ValidationError("Email is required")
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email address")

    role_value = role.value if isinstance(role, Role) else (role or Role.MEMBER.value)
    if not Role.has_value(role_value):
        raise ValidationError(f"Invalid role '{role_value}'")
    if role_value == Role.OWNER.value:
        raise ValidationError("Invitations cannot grant the OWNER role")

    org = org_service.get_org_or_404(db, org_id)
    inviter = membership_service.require_membership(
        db, org_id, invited_by, ROLES_CAN_INVITE, action="invite users"
    )

    if org.current_users >= org.max_users:
        raise PermissionDeniedError(USER_LIMIT_MESSAGE)

    now = _utcnow()
    existing = find_pending_for_email(db, email, org_id)
    if existing:
        if not is_expired(existing, now):
            raise ConflictError("User already invited")
        mark_expired(db, existing, now)

    if membership_service.get_membership_by_email(db, org_id, email):
        raise ConflictError("User is already a member of this organization")

    invitation = Invitation(
        organization_id=org_id,
        email=email,
        role=role_value,
        invited_by=invited_by,
        token=generate_token(32),
        status=InvitationStatus.PENDING.value,
        expires_at=now + timedelta(days=settings.INVITE_EXPIRY_DAYS),
    )
    db.add(invitation)
    db.commit()
    db.refresh(invitation)

    logger.info("Invitation issued org=%s invitation=%s role=%s", org_id, invitation.id, role_value)
    return IssuedInvitation(invitation=invitation, organization=org, inviter=inviter)


# =============================================================================
# Redeem
# =============================================================================

@dataclass
class RedeemedInvitation:
    invitation: Invitation
    organization: Organization
    membership: OrganizationMember


def accept_invitation(
    db: Session,
    token: str | None,
    user_id: UUID,
    email: str,
    *,
    now: datetime | None = None,
) -> RedeemedInvitation:
    """
    Redeem an invitation token for the authenticated user.

    Raises:
        ValidationError: Token missing
        NotFoundError: Unknown token
        ConflictError: Not PENDING, already a member, or lost a race
        InvitationExpiredError: Past expiry (status moves to EXPIRED first)
        PermissionDeniedError: Email mismatch or user limit reached
    """
    if not token:
        raise ValidationError("Token is required")

    invitation = get_by_token(db, token)
    if not invitation:
        raise NotFoundError("Invitation not found")

    return redeem(db, invitation, user_id, email, now=now)


def redeem(
    db: Session,
    invitation: Invitation,
    user_id: UUID,
    email: str,
    *,
    now: datetime | None = None,
) -> RedeemedInvitation:
    """Run the redemption checks and the atomic write for a loaded invitation."""
    now = now or _utcnow()

    if invitation.status != InvitationStatus.PENDING.value:
        raise ConflictError(f"Invitation has already been {invitation.status.lower()}")

    if is_expired(invitation, now):
        mark_expired(db, invitation, now)
        db.commit()
        logger.info("Invitation expired on redemption invitation=%s", invitation.id)
        raise InvitationExpiredError()

    if normalize_email(email) != invitation.email:
        raise PermissionDeniedError("This invitation was sent to a different email address")

    org = org_service.get_org_or_404(db, invitation.organization_id)

    if membership_service.get_membership(db, org.id, user_id):
        raise ConflictError("You are already a member of this organization")

    if org.current_users >= org.max_users:
        raise PermissionDeniedError(USER_LIMIT_MESSAGE)

    try:
        org_service.ensure_user(db, user_id, email)

        claimed = db.query(Invitation).filter(
            Invitation.id == invitation.id,
            Invitation.status == InvitationStatus.PENDING.value,
        ).update(
            {
                Invitation.status: InvitationStatus.ACCEPTED.value,
                Invitation.accepted_at: now,
                Invitation.accepted_by: user_id,
                Invitation.updated_at: now,
            },
            synchronize_session=False,
        )
        if not claimed:
            raise ConflictError("Invitation has already been used")

        membership = OrganizationMember(
            organization_id=org.id,
            user_id=user_id,
            role=invitation.role,
            permissions=[],
            invited_by=invitation.invited_by,
            invited_at=invitation.created_at,
            joined_at=now,
        )
        db.add(membership)
        db.flush()

        seated = db.query(Organization).filter(
            Organization.id == org.id,
            Organization.current_users < Organization.max_users,
        ).update(
            {Organization.current_users: Organization.current_users + 1},
            synchronize_session=False,
        )
        if not seated:
            raise PermissionDeniedError(USER_LIMIT_MESSAGE)

        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("You are already a member of this organization") from exc
    except (ConflictError, PermissionDeniedError):
        db.rollback()
        raise

    db.refresh(invitation)
    db.refresh(org)
    db.refresh(membership)
    logger.info(
        "Invitation accepted org=%s invitation=%s user=%s", org.id, invitation.id, user_id
    )
    return RedeemedInvitation(invitation=invitation, organization=org, membership=membership)


# =============================================================================
# Expiry sweep
# =============================================================================

def expire_stale_invitations(db: Session, now: datetime | None = None) -> int:
    """Move every PENDING invitation past its expiry to EXPIRED."""
    now = now or _utcnow()
    count = db.query(Invitation).filter(
        Invitation.status == InvitationStatus.PENDING.value,
        Invitation.expires_at < now,
    ).update(
        {
            Invitation.status: InvitationStatus.EXPIRED.value,
            Invitation.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()
    if count:
        logger.info("Expired %d stale invitations", count)
    return count


def get_inviter_name(db: Session, user_id: UUID | None) -> str:
    if not user_id:
        return "A teammate"
    user = db.query(User).filter(User.id == user_id).first()
    return user.full_name if user else "A teammate"

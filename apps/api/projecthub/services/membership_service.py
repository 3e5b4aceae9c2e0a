"""Membership lookups and member removal."""

import logging
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from projecthub.core.errors import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationError,
)
from projecthub.db.enums import ROLES_CAN_REMOVE_MEMBERS, Role
from projecthub.db.models import Organization, OrganizationMember, User

logger = logging.getLogger(__name__)


def get_membership(db: Session, org_id: UUID, user_id: UUID) -> OrganizationMember | None:
    return db.query(OrganizationMember).filter(
        OrganizationMember.organization_id == org_id,
        OrganizationMember.user_id == user_id,
    ).first()


def get_membership_by_email(db: Session, org_id: UUID, email: str) -> OrganizationMember | None:
    return (
        db.query(OrganizationMember)
        .join(User, User.id == OrganizationMember.user_id)
        .filter(
            OrganizationMember.organization_id == org_id,
            User.email == email.strip().lower(),
        )
        .first()
    )


def require_membership(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    roles=None,
    *,
    action: str = "perform this action",
) -> OrganizationMember:
    """
    Return the caller's membership or raise.

    Raises:
        PermissionDeniedError: Not a member, or role not in ``roles``
    """
    membership = get_membership(db, org_id, user_id)
    if not membership:
        raise PermissionDeniedError("You are not a member of this organization")
    if roles is not None and Role(membership.role) not in roles:
        raise PermissionDeniedError(f"You don't have permission to {action}")
    return membership


def count_owners(db: Session, org_id: UUID) -> int:
    return db.query(func.count(OrganizationMember.id)).filter(
        OrganizationMember.organization_id == org_id,
        OrganizationMember.role == Role.OWNER.value,
    ).scalar() or 0


def remove_member(
    db: Session,
    org_id: UUID | None,
    requesting_user_id: UUID | None,
    user_id_to_remove: UUID | None,
) -> OrganizationMember:
    """
    Remove a member from an organization.

    Checks run in this order: input, requester membership, target existence,
    sole-owner protection, requester role, self-removal, owner-by-non-owner.
    The membership delete and the ``current_users`` decrement commit together.

    Raises:
        ValidationError: Missing ids, or self-removal
        PermissionDeniedError: Requester not a member, not OWNER/ADMIN, or a
            non-owner removing an OWNER
        NotFoundError: Target not a member
        ConflictError: Target is the only OWNER
    """
    if not org_id or not requesting_user_id or not user_id_to_remove:
        raise ValidationError("Organization ID and user ID are required")

    requester = get_membership(db, org_id, requesting_user_id)
    if not requester:
        raise PermissionDeniedError("You are not a member of this organization")

    target = get_membership(db, org_id, user_id_to_remove)
    if not target:
        raise NotFoundError("User is not a member of this organization")

    if target.role == Role.OWNER.value and count_owners(db, org_id) <= 1:
        raise ConflictError("Cannot remove the last owner of the organization")

    if Role(requester.role) not in ROLES_CAN_REMOVE_MEMBERS:
        raise PermissionDeniedError("You don't have permission to remove users")

    if requesting_user_id == user_id_to_remove:
        raise ValidationError("You cannot remove yourself from the organization")

    if target.role == Role.OWNER.value and requester.role != Role.OWNER.value:
        raise PermissionDeniedError("Only owners can remove other owners")

    db.delete(target)
    db.query(Organization).filter(
        Organization.id == org_id,
        Organization.current_users > 0,
    ).update(
        {Organization.current_users: Organization.current_users - 1},
        synchronize_session=False,
    )
    db.commit()

    logger.info(
        "Member removed org=%s user=%s by=%s", org_id, user_id_to_remove, requesting_user_id
    )
    return target

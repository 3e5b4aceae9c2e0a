"""Invitation endpoints: issue, list, and accept."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from projecthub.core.config import settings
from projecthub.core.deps import (
    get_current_identity, get_db, get_email_sender, require_roles,
)
from projecthub.core.rate_limit import INVITE_LIMIT, limiter
from projecthub.db.enums import ROLES_CAN_INVITE
from projecthub.schemas.auth import Identity, MemberContext
from projecthub.schemas.invite import InviteAccept, InviteCreate, InviteRead
from projecthub.schemas.org import MembershipRead
from projecthub.services import email_templates, invite_service
from projecthub.services.email_service import EmailSender, send_best_effort

logger = logging.getLogger(__name__)

router = APIRouter(tags=["invites"])


@router.post("/organizations/{org_id}/invitations", status_code=201)
@limiter.limit(INVITE_LIMIT)
def create_invitation(
    request: Request,
    org_id: UUID,
    data: InviteCreate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    """
    Invite someone by email.

    The invitation is committed before the email goes out; a failed email is
    logged and reported as ``email_sent: false`` without undoing the invite.
    """
    issued = invite_service.create_invitation(
        db, org_id, identity.user_id, data.email, data.role
    )
    invitation = issued.invitation

    message = email_templates.render_invitation(
        to=invitation.email,
        org_name=issued.organization.name,
        inviter_name=invite_service.get_inviter_name(db, identity.user_id),
        role=invitation.role,
        token=invitation.token,
        expiry_days=settings.INVITE_EXPIRY_DAYS,
    )
    email_sent = send_best_effort(sender, message, context=f"invitation={invitation.id}")

    return {
        "success": True,
        "message": "Invitation sent successfully",
        "invitation": InviteRead.model_validate(invitation).model_dump(mode="json"),
        "email_sent": email_sent,
    }


@router.get("/organizations/{org_id}/invitations")
def list_invitations(
    org_id: UUID,
    member: MemberContext = Depends(require_roles(ROLES_CAN_INVITE)),
    db: Session = Depends(get_db),
):
    invitations = invite_service.list_invitations(db, org_id)
    return {
        "success": True,
        "invitations": [InviteRead.model_validate(i).model_dump(mode="json") for i in invitations],
    }


@router.post("/invitations/accept")
def accept_invitation(
    data: InviteAccept,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Redeem an invitation token as the signed-in user."""
    redeemed = invite_service.accept_invitation(
        db, data.token, identity.user_id, identity.email
    )
    return {
        "success": True,
        "message": f"Welcome to {redeemed.organization.name}!",
        "membership": MembershipRead.model_validate(redeemed.membership).model_dump(mode="json"),
    }

"""Tests for the invitation lifecycle: issue, redeem, expire."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.orm import Session

from projecthub.core.errors import ConflictError, InvitationExpiredError, PermissionDeniedError
from projecthub.db.enums import InvitationStatus, Role
from projecthub.db.models import Invitation, Organization, OrganizationMember
from projecthub.services import invite_service


def _invitation(db: Session, email: str) -> Invitation:
    return db.query(Invitation).filter(Invitation.email == email).one()


def _org(db: Session, org_id) -> Organization:
    return db.query(Organization).filter(Organization.id == org_id).one()


async def _invite(client: AsyncClient, org, inviter, email: str, role: str = "MEMBER"):
    return await client.post(
        f"/organizations/{org.id}/invitations",
        json={"email": email, "role": role},
        headers=inviter.headers,
    )


async def _accept(client: AsyncClient, token: str, actor):
    return await client.post("/invitations/accept", json={"token": token}, headers=actor.headers)


# =============================================================================
# Issue
# =============================================================================

@pytest.mark.asyncio
async def test_issue_invitation_sends_email(
    client: AsyncClient, db: Session, owner, test_org, sender, make_actor
):
    invitee = make_actor("invitee")

    response = await _invite(client, test_org, owner, invitee.email.upper())

    assert response.status_code == 201
    body = response.json()
    assert body["email_sent"] is True
    assert body["invitation"]["email"] == invitee.email
    assert body["invitation"]["status"] == InvitationStatus.PENDING.value
    assert "token" not in body["invitation"]

    invitation = _invitation(db, invitee.email)
    assert len(invitation.token) == 64
    assert invitation.expires_at - invitation.created_at >= timedelta(days=7) - timedelta(seconds=5)

    assert len(sender.sent) == 1
    message = sender.sent[0]
    assert message.to == [invitee.email]
    assert message.subject == "You've been invited to join Acme on ProjectHub"
    assert invitation.token in message.html


@pytest.mark.asyncio
async def test_issue_invitation_survives_email_failure(
    client: AsyncClient, db: Session, owner, test_org, sender, make_actor
):
    sender.fail = True
    invitee = make_actor("invitee")

    response = await _invite(client, test_org, owner, invitee.email)

    assert response.status_code == 201
    assert response.json()["email_sent"] is False
    assert _invitation(db, invitee.email).status == InvitationStatus.PENDING.value


@pytest.mark.asyncio
async def test_duplicate_pending_invitation_conflicts(client: AsyncClient, owner, test_org, make_actor):
    invitee = make_actor("invitee")
    await _invite(client, test_org, owner, invitee.email)

    response = await _invite(client, test_org, owner, invitee.email)

    assert response.status_code == 409
    assert response.json() == {"error": "User already invited"}


@pytest.mark.asyncio
async def test_expired_pending_invitation_can_be_reissued(
    client: AsyncClient, db: Session, owner, test_org, make_actor
):
    invitee = make_actor("invitee")
    await _invite(client, test_org, owner, invitee.email)
    old = _invitation(db, invitee.email)
    old.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.commit()
    old_id = old.id

    response = await _invite(client, test_org, owner, invitee.email)

    assert response.status_code == 201
    statuses = {
        i.id: i.status
        for i in db.query(Invitation).filter(Invitation.email == invitee.email).all()
    }
    assert statuses[old_id] == InvitationStatus.EXPIRED.value
    assert sorted(statuses.values()) == [InvitationStatus.EXPIRED.value, InvitationStatus.PENDING.value]


@pytest.mark.asyncio
async def test_cannot_invite_existing_member(client: AsyncClient, owner, test_org, add_member):
    member = add_member(test_org, Role.MEMBER)

    response = await _invite(client, test_org, owner, member.email)

    assert response.status_code == 409
    assert response.json() == {"error": "User is already a member of this organization"}


@pytest.mark.asyncio
async def test_member_role_cannot_invite(client: AsyncClient, test_org, add_member, make_actor):
    member = add_member(test_org, Role.MEMBER)

    response = await _invite(client, test_org, member, make_actor("invitee").email)

    assert response.status_code == 403
    assert response.json() == {"error": "You don't have permission to invite users"}


@pytest.mark.asyncio
async def test_manager_can_invite(client: AsyncClient, test_org, add_member, make_actor):
    manager = add_member(test_org, Role.MANAGER)

    response = await _invite(client, test_org, manager, make_actor("invitee").email, role="VIEWER")

    assert response.status_code == 201
    assert response.json()["invitation"]["role"] == "VIEWER"


@pytest.mark.asyncio
async def test_owner_role_cannot_be_granted_by_invitation(
    client: AsyncClient, owner, test_org, make_actor
):
    response = await _invite(client, test_org, owner, make_actor("invitee").email, role="OWNER")

    assert response.status_code == 400
    assert response.json() == {"error": "Invitations cannot grant the OWNER role"}


@pytest.mark.asyncio
async def test_list_invitations_hides_tokens(client: AsyncClient, owner, test_org, make_actor):
    await _invite(client, test_org, owner, make_actor("invitee").email)

    response = await client.get(f"/organizations/{test_org.id}/invitations", headers=owner.headers)

    assert response.status_code == 200
    invitations = response.json()["invitations"]
    assert len(invitations) == 1
    assert "token" not in invitations[0]


# =============================================================================
# Redeem
# =============================================================================

@pytest.mark.asyncio
async def test_accept_invitation_creates_membership(
    client: AsyncClient, db: Session, owner, test_org, make_actor
):
    invitee = make_actor("invitee")
    await _invite(client, test_org, owner, invitee.email, role="ADMIN")
    token = _invitation(db, invitee.email).token

    response = await _accept(client, token, invitee)

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Welcome to Acme!"
    assert body["membership"]["role"] == "ADMIN"
    assert body["membership"]["user_id"] == str(invitee.user_id)

    invitation = _invitation(db, invitee.email)
    assert invitation.status == InvitationStatus.ACCEPTED.value
    assert invitation.accepted_by == invitee.user_id
    assert invitation.accepted_at is not None
    assert _org(db, test_org.id).current_users == 2


@pytest.mark.asyncio
async def test_accepted_invitation_cannot_be_reused(
    client: AsyncClient, db: Session, owner, test_org, make_actor
):
    invitee = make_actor("invitee")
    await _invite(client, test_org, owner, invitee.email)
    token = _invitation(db, invitee.email).token
    await _accept(client, token, invitee)

    response = await _accept(client, token, invitee)

    assert response.status_code == 409
    assert response.json() == {"error": "Invitation has already been accepted"}
    assert _org(db, test_org.id).current_users == 2


@pytest.mark.asyncio
async def test_accept_with_different_email_is_forbidden(
    client: AsyncClient, db: Session, owner, test_org, make_actor
):
    invitee = make_actor("invitee")
    impostor = make_actor("impostor")
    await _invite(client, test_org, owner, invitee.email)
    token = _invitation(db, invitee.email).token

    response = await _accept(client, token, impostor)

    assert response.status_code == 403
    assert response.json() == {"error": "This invitation was sent to a different email address"}
    assert _invitation(db, invitee.email).status == InvitationStatus.PENDING.value


@pytest.mark.asyncio
async def test_accept_expired_invitation_marks_it_expired(
    client: AsyncClient, db: Session, owner, test_org, make_actor
):
    invitee = make_actor("invitee")
    await _invite(client, test_org, owner, invitee.email)
    invitation = _invitation(db, invitee.email)
    invitation.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    db.commit()

    response = await _accept(client, invitation.token, invitee)

    assert response.status_code == 400
    assert response.json() == {"error": "Invitation has expired"}
    assert _invitation(db, invitee.email).status == InvitationStatus.EXPIRED.value
    assert _org(db, test_org.id).current_users == 1


@pytest.mark.asyncio
async def test_accept_unknown_token_is_not_found(client: AsyncClient, make_actor):
    response = await _accept(client, "0" * 64, make_actor("invitee"))

    assert response.status_code == 404
    assert response.json() == {"error": "Invitation not found"}


@pytest.mark.asyncio
async def test_accept_requires_token(client: AsyncClient, make_actor):
    response = await client.post(
        "/invitations/accept", json={}, headers=make_actor("invitee").headers
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Token is required"}


@pytest.mark.asyncio
async def test_user_limit_blocks_sixth_seat(
    client: AsyncClient, db: Session, owner, test_org, make_actor
):
    """FREE plan: owner plus four redeemed invitations fill all five seats."""
    for _ in range(4):
        invitee = make_actor("invitee")
        assert (await _invite(client, test_org, owner, invitee.email)).status_code == 201
        token = _invitation(db, invitee.email).token
        assert (await _accept(client, token, invitee)).status_code == 200

    assert _org(db, test_org.id).current_users == 5

    response = await _invite(client, test_org, owner, make_actor("late").email)

    assert response.status_code == 403
    assert response.json() == {"error": invite_service.USER_LIMIT_MESSAGE}


def test_redeem_rechecks_user_limit(db: Session, owner, test_org, make_actor):
    invitee = make_actor("invitee")
    issued = invite_service.create_invitation(db, test_org.id, owner.user_id, invitee.email)
    org = _org(db, test_org.id)
    org.max_users = org.current_users
    db.commit()

    with pytest.raises(PermissionDeniedError):
        invite_service.accept_invitation(db, issued.invitation.token, invitee.user_id, invitee.email)

    assert _invitation(db, invitee.email).status == InvitationStatus.PENDING.value
    assert db.query(OrganizationMember).filter_by(user_id=invitee.user_id).count() == 0


def test_redeem_uses_supplied_clock(db: Session, owner, test_org, make_actor):
    invitee = make_actor("invitee")
    issued = invite_service.create_invitation(db, test_org.id, owner.user_id, invitee.email)
    later = issued.invitation.expires_at + timedelta(seconds=1)

    with pytest.raises(InvitationExpiredError):
        invite_service.accept_invitation(
            db, issued.invitation.token, invitee.user_id, invitee.email, now=later
        )

    with pytest.raises(ConflictError):
        invite_service.accept_invitation(
            db, issued.invitation.token, invitee.user_id, invitee.email
        )


def test_expire_stale_invitations(db: Session, owner, test_org, make_actor):
    fresh = invite_service.create_invitation(db, test_org.id, owner.user_id, make_actor("a").email)
    stale = invite_service.create_invitation(db, test_org.id, owner.user_id, make_actor("b").email)
    stale.invitation.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
    db.commit()

    assert invite_service.expire_stale_invitations(db) == 1

    db.refresh(fresh.invitation)
    db.refresh(stale.invitation)
    assert fresh.invitation.status == InvitationStatus.PENDING.value
    assert stale.invitation.status == InvitationStatus.EXPIRED.value

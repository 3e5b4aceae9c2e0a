"""FastAPI dependencies for authentication, authorization, and database access."""

import logging
from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from projecthub.core.config import settings
from projecthub.core.security import decode_identity_token, secrets_match
from projecthub.db.session import SessionLocal

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_bearer(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX):].strip() or None
    return None


def get_current_identity(request: Request):
    """
    Resolve the caller from the identity provider's bearer token.

    Only the token is trusted; the user profile row may not exist yet
    (e.g. while redeeming an invitation right after sign-up).

    Raises:
        HTTPException 401: Missing or invalid token
    """
    from projecthub.schemas.auth import Identity

    token = _extract_bearer(request)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        claims = decode_identity_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        user_id = UUID(str(claims["sub"]))
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject")

    return Identity(user_id=user_id, email=(claims.get("email") or "").lower())


def get_org_member(
    org_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Caller identity plus their membership in ``org_id`` (path parameter).

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: Not a member, or unknown role
    """
    from projecthub.db.enums import Role
    from projecthub.db.models import OrganizationMember
    from projecthub.schemas.auth import MemberContext

    identity = get_current_identity(request)
    membership = db.query(OrganizationMember).filter(
        OrganizationMember.organization_id == org_id,
        OrganizationMember.user_id == identity.user_id,
    ).first()

    if not membership:
        raise HTTPException(status_code=403, detail="Not a member of this organization")

    if not Role.has_value(membership.role):
        raise HTTPException(
            status_code=403,
            detail=f"Unknown role '{membership.role}'. Contact administrator.",
        )

    return MemberContext(
        user_id=identity.user_id,
        email=identity.email,
        org_id=org_id,
        role=Role(membership.role),
    )


def require_roles(allowed_roles):
    """
    Dependency factory for role-based authorization within an organization.

    Usage:
        @router.post("/{org_id}/webhooks")
        def create(member: MemberContext = Depends(require_roles(ROLES_CAN_MANAGE_WEBHOOKS))):
    """
    def dependency(
        org_id: UUID,
        request: Request,
        db: Session = Depends(get_db),
    ):
        member = get_org_member(org_id, request, db)
        if member.role not in allowed_roles:
            raise HTTPException(
                status_code=403,
                detail=f"Role '{member.role.value}' not authorized for this action",
            )
        return member
    return dependency


def verify_internal_secret(x_internal_secret: str | None = Header(default=None)) -> None:
    """Guard for scheduled jobs and identity-provider hooks."""
    if not settings.INTERNAL_SECRET:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not secrets_match(x_internal_secret, settings.INTERNAL_SECRET):
        logger.warning("Rejected internal call with invalid secret")
        raise HTTPException(status_code=403, detail="Invalid internal secret")


def get_email_sender():
    """Email transport for request handlers (overridden in tests)."""
    from projecthub.services.email_service import build_email_sender

    return build_email_sender()

"""Identity-provider lifecycle hooks (pre sign-up, post confirmation).

Both hooks take the provider's event dict and return a new dict; the input
is never mutated.
"""

import copy
import logging
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from projecthub.core.config import settings
from projecthub.core.errors import AppError, PermissionDeniedError, ValidationError
from projecthub.jobs.utils import mask_email
from projecthub.services import invite_service, org_service

logger = logging.getLogger(__name__)

ORG_ATTRIBUTE = "custom:organizationId"
ROLE_ATTRIBUTE = "custom:role"


def _attributes(event: dict[str, Any]) -> dict[str, Any]:
    return (event.get("request") or {}).get("userAttributes") or {}


def _parse_uuid(value: Any) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def is_disposable(email: str) -> bool:
    domain = email.rpartition("@")[2].lower()
    return domain in settings.disposable_domains_list


def pre_signup(db: Session, event: dict[str, Any]) -> dict[str, Any]:
    """
    Gate a sign-up before the provider creates the account.

    Raises:
        ValidationError: Missing or disposable email
        PermissionDeniedError: Target organization is at its user limit
    """
    result = copy.deepcopy(event)
    attributes = result.setdefault("request", {}).setdefault("userAttributes", {})
    email = invite_service.normalize_email(attributes.get("email"))

    if not email:
        raise ValidationError("Email is required")
    if is_disposable(email):
        raise ValidationError("Disposable email addresses are not allowed")

    invitation = invite_service.find_pending_for_email(db, email)
    if invitation and not invite_service.is_expired(invitation):
        response = result.setdefault("response", {})
        response["autoConfirmUser"] = False
        response["autoVerifyEmail"] = True
        attributes.setdefault(ORG_ATTRIBUTE, str(invitation.organization_id))
        attributes.setdefault(ROLE_ATTRIBUTE, invitation.role)
        logger.info("Pre-signup matched invitation=%s email=%s", invitation.id, mask_email(email))

    org_id = _parse_uuid(attributes.get(ORG_ATTRIBUTE))
    if org_id:
        org = org_service.get_org_by_id(db, org_id)
        if org and org.current_users >= org.max_users:
            raise PermissionDeniedError("Organization has reached its user limit")

    return result


def post_confirmation(db: Session, event: dict[str, Any]) -> dict[str, Any]:
    """
    Create the user profile and redeem a matching pending invitation.

    Never raises: sign-up must not be blocked by our bookkeeping.
    """
    result = copy.deepcopy(event)
    attributes = _attributes(result)
    user_id = _parse_uuid(attributes.get("sub") or result.get("userName"))
    email = invite_service.normalize_email(attributes.get("email"))

    if not user_id or not email:
        logger.warning("Post-confirmation event missing sub or email")
        return result

    try:
        org_service.ensure_user(
            db,
            user_id,
            email,
            first_name=attributes.get("given_name"),
            last_name=attributes.get("family_name"),
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to create profile user=%s", user_id)
        return result

    org_id = _parse_uuid(attributes.get(ORG_ATTRIBUTE))
    if not org_id:
        return result

    invitation = invite_service.find_pending_for_email(db, email, org_id)
    if not invitation:
        return result

    try:
        invite_service.redeem(db, invitation, user_id, email)
    except AppError as exc:
        logger.warning(
            "Post-confirmation could not redeem invitation=%s: %s", invitation.id, exc.message
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Post-confirmation redemption failed invitation=%s", invitation.id)
    return result

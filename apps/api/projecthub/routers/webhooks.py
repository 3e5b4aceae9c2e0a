"""Organization webhook management (OWNER/ADMIN)."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from projecthub.core.deps import get_db, require_roles
from projecthub.db.enums import ROLES_CAN_MANAGE_WEBHOOKS
from projecthub.schemas.auth import MemberContext
from projecthub.schemas.webhook import WebhookCreate, WebhookCreated, WebhookRead
from projecthub.services import webhook_service

router = APIRouter(prefix="/organizations/{org_id}/webhooks", tags=["webhooks"])

require_webhook_admin = require_roles(ROLES_CAN_MANAGE_WEBHOOKS)


@router.post("", status_code=201)
def create_webhook(
    org_id: UUID,
    data: WebhookCreate,
    member: MemberContext = Depends(require_webhook_admin),
    db: Session = Depends(get_db),
):
    webhook = webhook_service.create_webhook(
        db, org_id, member.user_id, data.url, data.events, data.secret
    )
    return {
        "success": True,
        "webhook": WebhookCreated.model_validate(webhook).model_dump(mode="json"),
    }


@router.get("")
def list_webhooks(
    org_id: UUID,
    member: MemberContext = Depends(require_webhook_admin),
    db: Session = Depends(get_db),
):
    webhooks = webhook_service.list_webhooks(db, org_id)
    return {
        "success": True,
        "webhooks": [WebhookRead.model_validate(w).model_dump(mode="json") for w in webhooks],
    }


@router.delete("/{webhook_id}")
def delete_webhook(
    org_id: UUID,
    webhook_id: UUID,
    member: MemberContext = Depends(require_webhook_admin),
    db: Session = Depends(get_db),
):
    webhook_service.delete_webhook(db, org_id, webhook_id)
    return {"success": True}


@router.post("/{webhook_id}/enable")
def reenable_webhook(
    org_id: UUID,
    webhook_id: UUID,
    member: MemberContext = Depends(require_webhook_admin),
    db: Session = Depends(get_db),
):
    """Reactivate a webhook and reset its failure count."""
    webhook = webhook_service.reenable_webhook(db, org_id, webhook_id)
    return {
        "success": True,
        "webhook": WebhookRead.model_validate(webhook).model_dump(mode="json"),
    }

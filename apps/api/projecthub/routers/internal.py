"""
Internal endpoints for scheduled jobs, identity-provider hooks, and
service-to-service fan-out.

Protected by X-Internal-Secret header.
Call from external cron or the identity provider's hook integration.
"""

from typing import Any, AsyncGenerator

import httpx
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from projecthub.core.config import settings
from projecthub.core.deps import get_db, get_email_sender, verify_internal_secret
from projecthub.jobs import registry
from projecthub.schemas.notification import NotificationSendRequest, SlackNotifyRequest
from projecthub.schemas.webhook import WebhookDispatchRequest
from projecthub.services import identity_hooks, notification_service, slack_service, webhook_service
from projecthub.services.email_service import EmailSender

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


async def get_outbound_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Shared client for outbound deliveries within one request."""
    async with httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS) as client:
        yield client


# =============================================================================
# Scheduled jobs
# =============================================================================

@router.get("/scheduled")
def list_scheduled_jobs():
    return {"success": True, "jobs": sorted(registry.JOB_HANDLERS)}


@router.post("/scheduled/{job_name}")
async def run_scheduled_job(
    job_name: str,
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    summary = await registry.run_job(job_name, db, sender)
    return {"success": True, "job": job_name, "summary": summary}


# =============================================================================
# Fan-out
# =============================================================================

@router.post("/webhooks/dispatch")
async def dispatch_webhook_event(
    data: WebhookDispatchRequest,
    db: Session = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_outbound_client),
):
    result = await webhook_service.dispatch_event(
        db, data.organization_id, data.event, data.data, client=client
    )
    return {
        "success": True,
        "message": f"Dispatched to {result['dispatched']} webhooks",
        "results": result,
    }


@router.post("/notifications/send")
def send_notification(
    data: NotificationSendRequest,
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    request = notification_service.NotificationRequest(
        user_id=data.user_id,
        type=data.type,
        title=data.title,
        message=data.message,
        link=data.link,
        metadata=data.metadata,
        organization_id=data.organization_id,
    )
    results = notification_service.send_notification(db, request, sender, data.channels)
    return {"success": True, "message": "Notification sent", "results": results}


@router.post("/slack/notify")
async def notify_slack(
    data: SlackNotifyRequest,
    client: httpx.AsyncClient = Depends(get_outbound_client),
):
    await slack_service.post_message(
        data.webhook_url, data.message, data.attachments, client=client
    )
    return {"success": True, "message": "Slack notification sent"}


# =============================================================================
# Identity-provider hooks
# =============================================================================

@router.post("/hooks/pre-signup")
def pre_signup_hook(
    event: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    return identity_hooks.pre_signup(db, event)


@router.post("/hooks/post-confirmation")
def post_confirmation_hook(
    event: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    return identity_hooks.post_confirmation(db, event)

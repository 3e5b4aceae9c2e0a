"""Outbound organization webhooks: registration and signed event delivery.

Each delivery is a single attempt. Consecutive failures are counted per
webhook; once the count reaches ``WEBHOOK_FAILURE_THRESHOLD`` the webhook is
deactivated and stays that way until an admin re-enables it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from projecthub.core.config import settings
from projecthub.core.errors import NotFoundError, ValidationError
from projecthub.core.security import generate_token, sign_payload
from projecthub.core.url_validation import validate_outbound_webhook_url
from projecthub.db.models import Webhook
from projecthub.jobs.utils import safe_url

logger = logging.getLogger(__name__)

USER_AGENT = "ProjectHub-Webhooks/1.0"
SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"

WEBHOOK_EVENTS = frozenset({
    "task.created",
    "task.updated",
    "task.completed",
    "task.deleted",
    "project.created",
    "project.updated",
    "member.joined",
    "member.removed",
    "invitation.created",
    "comment.added",
})


# =============================================================================
# Registration
# =============================================================================

def _validate_events(events: list[str] | None) -> list[str]:
    cleaned = []
    for event in events or []:
        event = (event or "").strip()
        if event and event not in cleaned:
            cleaned.append(event)
    if not cleaned:
        raise ValidationError("At least one event is required")
    unknown = sorted(set(cleaned) - WEBHOOK_EVENTS)
    if unknown:
        raise ValidationError("Unknown webhook events", details={"events": unknown})
    return cleaned


def create_webhook(
    db: Session,
    org_id: UUID,
    created_by: UUID,
    url: str,
    events: list[str],
    secret: str | None = None,
) -> Webhook:
    webhook = Webhook(
        organization_id=org_id,
        url=validate_outbound_webhook_url(url),
        events=_validate_events(events),
        secret=(secret or "").strip() or generate_token(32),
        active=True,
        failure_count=0,
        created_by=created_by,
    )
    db.add(webhook)
    db.commit()
    db.refresh(webhook)
    logger.info("Webhook registered org=%s webhook=%s url=%s", org_id, webhook.id, safe_url(webhook.url))
    return webhook


def list_webhooks(db: Session, org_id: UUID) -> list[Webhook]:
    return (
        db.query(Webhook)
        .filter(Webhook.organization_id == org_id)
        .order_by(Webhook.created_at.desc())
        .all()
    )


def get_webhook_or_404(db: Session, org_id: UUID, webhook_id: UUID) -> Webhook:
    webhook = db.query(Webhook).filter(
        Webhook.id == webhook_id,
        Webhook.organization_id == org_id,
    ).first()
    if not webhook:
        raise NotFoundError("Webhook not found")
    return webhook


def delete_webhook(db: Session, org_id: UUID, webhook_id: UUID) -> None:
    webhook = get_webhook_or_404(db, org_id, webhook_id)
    db.delete(webhook)
    db.commit()


def reenable_webhook(db: Session, org_id: UUID, webhook_id: UUID) -> Webhook:
    """The only path from inactive back to active."""
    webhook = get_webhook_or_404(db, org_id, webhook_id)
    webhook.active = True
    webhook.failure_count = 0
    db.commit()
    db.refresh(webhook)
    logger.info("Webhook re-enabled org=%s webhook=%s", org_id, webhook.id)
    return webhook


def get_subscribed_webhooks(db: Session, org_id: UUID, event_type: str) -> list[Webhook]:
    """Active webhooks of the organization that subscribe to ``event_type``."""
    candidates = db.query(Webhook).filter(
        Webhook.organization_id == org_id,
        Webhook.active.is_(True),
    ).all()
    return [webhook for webhook in candidates if event_type in (webhook.events or [])]


# =============================================================================
# Delivery
# =============================================================================

def build_body(event_type: str, data: Any, timestamp: datetime) -> bytes:
    """Compact JSON body; the signature covers exactly these bytes."""
    payload = {
        "event": event_type,
        "timestamp": timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        "data": data,
    }
    return json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")


def build_headers(secret: str, event_type: str, body: bytes) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: sign_payload(secret, body),
        EVENT_HEADER: event_type,
        "User-Agent": USER_AGENT,
    }


@dataclass
class DeliveryResult:
    webhook_id: UUID
    success: bool
    status_code: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "webhook_id": str(self.webhook_id),
            "success": self.success,
            "status_code": self.status_code,
            "error": self.error,
        }


async def deliver(
    client: httpx.AsyncClient,
    webhook_id: UUID,
    url: str,
    secret: str,
    event_type: str,
    body: bytes,
) -> DeliveryResult:
    """POST one signed body. Never raises; failures come back as results."""
    try:
        response = await client.post(
            url,
            content=body,
            headers=build_headers(secret, event_type, body),
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
        )
    except httpx.TimeoutException:
        logger.warning("Webhook delivery timed out webhook=%s url=%s", webhook_id, safe_url(url))
        return DeliveryResult(webhook_id, False, error="timeout")
    except httpx.HTTPError as exc:
        logger.warning(
            "Webhook delivery failed webhook=%s url=%s error=%s",
            webhook_id, safe_url(url), exc.__class__.__name__,
        )
        return DeliveryResult(webhook_id, False, error=exc.__class__.__name__)

    if 200 <= response.status_code < 300:
        return DeliveryResult(webhook_id, True, status_code=response.status_code)

    logger.warning(
        "Webhook delivery rejected webhook=%s url=%s status=%s",
        webhook_id, safe_url(url), response.status_code,
    )
    return DeliveryResult(
        webhook_id, False, status_code=response.status_code, error=f"HTTP {response.status_code}"
    )


def record_outcome(db: Session, webhook_id: UUID, success: bool, now: datetime) -> None:
    """Apply one delivery outcome to the webhook's breaker state (not committed)."""
    if success:
        db.query(Webhook).filter(Webhook.id == webhook_id).update(
            {Webhook.failure_count: 0, Webhook.last_triggered: now},
            synchronize_session=False,
        )
        return

    db.query(Webhook).filter(Webhook.id == webhook_id).update(
        {Webhook.failure_count: Webhook.failure_count + 1, Webhook.last_triggered: now},
        synchronize_session=False,
    )
    tripped = db.query(Webhook).filter(
        Webhook.id == webhook_id,
        Webhook.active.is_(True),
        Webhook.failure_count >= settings.WEBHOOK_FAILURE_THRESHOLD,
    ).update({Webhook.active: False}, synchronize_session=False)
    if tripped:
        logger.warning(
            "Webhook disabled after %d consecutive failures webhook=%s",
            settings.WEBHOOK_FAILURE_THRESHOLD, webhook_id,
        )


async def dispatch_event(
    db: Session,
    org_id: UUID,
    event_type: str,
    data: Any,
    *,
    client: httpx.AsyncClient | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Deliver ``event_type`` to every subscribed webhook of the organization.

    Deliveries run concurrently and the call returns once all have settled.
    Returns ``{"dispatched", "success", "failed", "results"}``.
    """
    if not org_id or not event_type:
        raise ValidationError("organizationId and event are required")

    webhooks = get_subscribed_webhooks(db, org_id, event_type)
    if not webhooks:
        logger.info("No webhooks subscribed org=%s event=%s", org_id, event_type)
        return {"dispatched": 0, "success": 0, "failed": 0, "results": []}

    now = now or datetime.now(timezone.utc)
    body = build_body(event_type, data, now)
    targets = [(w.id, w.url, w.secret) for w in webhooks]

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    try:
        settled = await asyncio.gather(
            *(deliver(client, wid, url, secret, event_type, body) for wid, url, secret in targets),
            return_exceptions=True,
        )
    finally:
        if owns_client:
            await client.aclose()

    results: list[DeliveryResult] = []
    for (webhook_id, _, _), outcome in zip(targets, settled):
        if isinstance(outcome, BaseException):
            logger.error(
                "Webhook delivery crashed webhook=%s error=%s",
                webhook_id, outcome.__class__.__name__,
            )
            outcome = DeliveryResult(webhook_id, False, error=outcome.__class__.__name__)
        record_outcome(db, webhook_id, outcome.success, now)
        results.append(outcome)
    db.commit()

    succeeded = sum(1 for r in results if r.success)
    summary = {
        "dispatched": len(results),
        "success": succeeded,
        "failed": len(results) - succeeded,
        "results": [r.to_dict() for r in results],
    }
    logger.info(
        "Webhook event dispatched org=%s event=%s success=%d failed=%d",
        org_id, event_type, summary["success"], summary["failed"],
    )
    return summary

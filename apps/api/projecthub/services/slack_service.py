"""Slack incoming-webhook notifier and message formatting helpers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from projecthub.core.config import settings
from projecthub.core.errors import TransportError, ValidationError
from projecthub.jobs.utils import safe_url

logger = logging.getLogger(__name__)

SLACK_TIMEOUT_SECONDS = 10.0
FOOTER = "ProjectHub"

ACTION_COLORS = {
    "created": "#36a64f",
    "updated": "#3b82f6",
    "completed": "#10b981",
    "deleted": "#ef4444",
}
DEFAULT_COLOR = "#6b7280"


async def post_message(
    webhook_url: str,
    message: str,
    attachments: list[dict[str, Any]] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> None:
    """
    Post ``{text, attachments}`` to a Slack incoming webhook.

    Raises:
        ValidationError: Missing URL or message
        TransportError: Slack rejected the request or was unreachable
    """
    if not webhook_url or not message:
        raise ValidationError("Missing required fields: webhookUrl, message")

    payload = {"text": message, "attachments": attachments or []}
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=SLACK_TIMEOUT_SECONDS)
    try:
        response = await client.post(webhook_url, json=payload)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.warning(
            "Slack rejected message url=%s status=%s",
            safe_url(webhook_url), exc.response.status_code,
        )
        raise TransportError(f"Slack API error: {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        logger.warning("Slack request failed url=%s error=%s", safe_url(webhook_url), exc.__class__.__name__)
        raise TransportError("Failed to reach Slack") from exc
    finally:
        if owns_client:
            await client.aclose()

    logger.info("Slack notification sent url=%s", safe_url(webhook_url))


def _ts(value: datetime | None = None) -> int:
    return int((value or datetime.now(timezone.utc)).timestamp())


def _task_url(task: dict[str, Any]) -> str:
    base = settings.APP_URL.rstrip("/")
    if task.get("project_id"):
        return f"{base}/projects/{task['project_id']}/tasks/{task.get('id', '')}"
    return f"{base}/tasks/{task.get('id', '')}"


def format_task_notification(task: dict[str, Any], action: str) -> dict[str, Any]:
    """Attachment describing a task event (created/updated/completed/deleted)."""
    fields = [
        {"title": "Status", "value": task.get("status") or "TODO", "short": True},
        {"title": "Priority", "value": task.get("priority") or "MEDIUM", "short": True},
    ]
    if task.get("assignee"):
        fields.append({"title": "Assignee", "value": task["assignee"], "short": True})
    if task.get("due_date"):
        fields.append({"title": "Due Date", "value": str(task["due_date"])[:10], "short": True})

    return {
        "color": ACTION_COLORS.get(action, DEFAULT_COLOR),
        "title": f"Task {action}: {task.get('title', 'Untitled')}",
        "title_link": _task_url(task),
        "text": task.get("description") or "",
        "fields": fields,
        "footer": FOOTER,
        "ts": _ts(),
    }


def format_project_notification(project: dict[str, Any], action: str) -> dict[str, Any]:
    """Attachment describing a project event."""
    fields = [
        {"title": "Status", "value": project.get("status") or "ACTIVE", "short": True},
    ]
    if project.get("task_count") is not None:
        fields.append({"title": "Tasks", "value": str(project["task_count"]), "short": True})

    return {
        "color": ACTION_COLORS.get(action, DEFAULT_COLOR),
        "title": f"Project {action}: {project.get('name', 'Untitled')}",
        "title_link": f"{settings.APP_URL.rstrip('/')}/projects/{project.get('id', '')}",
        "text": project.get("description") or "",
        "fields": fields,
        "footer": FOOTER,
        "ts": _ts(),
    }

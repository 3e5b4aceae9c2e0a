"""HTML/text bodies for every outgoing email."""

from __future__ import annotations

from dataclasses import dataclass
from html import escape

from projecthub.core.config import settings
from projecthub.services.email_service import EmailMessage, html_to_text

BRAND = "ProjectHub"
PRIMARY_COLOR = "#2563eb"


@dataclass(frozen=True)
class NotificationTemplate:
    subject: str
    icon: str
    color: str


NOTIFICATION_TEMPLATES: dict[str, NotificationTemplate] = {
    "TASK_ASSIGNED": NotificationTemplate("New Task Assigned", "📋", "#3b82f6"),
    "TASK_COMPLETED": NotificationTemplate("Task Completed", "✅", "#10b981"),
    "COMMENT_ADDED": NotificationTemplate("New Comment", "💬", "#8b5cf6"),
    "MENTION": NotificationTemplate("You were mentioned", "👋", "#f59e0b"),
    "PROJECT_INVITE": NotificationTemplate("Project Invitation", "🎯", "#06b6d4"),
    "DUE_DATE_REMINDER": NotificationTemplate("Due Date Reminder", "⏰", "#ef4444"),
}
DEFAULT_NOTIFICATION_TEMPLATE = "TASK_ASSIGNED"


def _layout(title: str, body: str, color: str = PRIMARY_COLOR) -> str:
    return (
        "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif; "
        "color: #1f2937; max-width: 600px; margin: 0 auto;\">"
        f"<div style=\"background: {color}; color: #ffffff; padding: 24px;\">"
        f"<h1 style=\"margin: 0; font-size: 22px;\">{title}</h1></div>"
        f"<div style=\"padding: 24px;\">{body}</div>"
        "<div style=\"padding: 16px 24px; font-size: 12px; color: #6b7280;\">"
        f"You are receiving this email from {BRAND}.</div>"
        "</body></html>"
    )


def _button(url: str, label: str, color: str = PRIMARY_COLOR) -> str:
    return (
        f"<p><a href=\"{escape(url, quote=True)}\" style=\"background: {color}; "
        "color: #ffffff; padding: 12px 20px; text-decoration: none; "
        f"border-radius: 6px; display: inline-block;\">{escape(label)}</a></p>"
    )


def _message(to: str, subject: str, html: str, text: str | None = None) -> EmailMessage:
    return EmailMessage(to=[to], subject=subject, html=html, text=text or html_to_text(html))


# =============================================================================
# Invitations
# =============================================================================

def accept_invite_url(token: str) -> str:
    return f"{settings.APP_URL.rstrip('/')}/accept-invite?token={token}"


def render_invitation(
    *,
    to: str,
    org_name: str,
    inviter_name: str,
    role: str,
    token: str,
    expiry_days: int,
) -> EmailMessage:
    url = accept_invite_url(token)
    body = (
        f"<p>Hi there,</p>"
        f"<p><strong>{escape(inviter_name)}</strong> has invited you to join "
        f"<strong>{escape(org_name)}</strong> on {BRAND} as a "
        f"<strong>{escape(role.title())}</strong>.</p>"
        f"{_button(url, 'Accept Invitation')}"
        f"<p>Or copy this link into your browser:<br>{escape(url)}</p>"
        f"<p>This invitation expires in {expiry_days} days.</p>"
    )
    text = (
        f"{inviter_name} has invited you to join {org_name} on {BRAND} "
        f"as a {role.title()}.\n\n"
        f"Accept the invitation: {url}\n\n"
        f"This invitation expires in {expiry_days} days."
    )
    subject = f"You've been invited to join {org_name} on {BRAND}"
    return _message(to, subject, _layout("You're invited!", body), text)


# =============================================================================
# Notifications
# =============================================================================

def render_notification(
    *,
    to: str,
    notification_type: str,
    title: str,
    message: str,
    link: str | None = None,
) -> EmailMessage:
    template = NOTIFICATION_TEMPLATES.get(
        notification_type, NOTIFICATION_TEMPLATES[DEFAULT_NOTIFICATION_TEMPLATE]
    )
    body = (
        f"<h2 style=\"font-size: 18px;\">{escape(title)}</h2>"
        f"<p>{escape(message)}</p>"
    )
    if link:
        body += _button(link, "View in ProjectHub", template.color)
    subject = f"{template.icon} {template.subject}"
    return _message(
        to, subject, _layout(f"{template.icon} {template.subject}", body, template.color)
    )


# =============================================================================
# Scheduled digests
# =============================================================================

def _task_rows(tasks: list[dict]) -> str:
    rows = "".join(
        "<li>"
        f"<strong>{escape(t['title'])}</strong>"
        f"{' (' + escape(t['project_name']) + ')' if t.get('project_name') else ''}"
        f"{' - due ' + t['due_date'] if t.get('due_date') else ''}"
        f" <span style=\"color: #6b7280;\">{escape(t.get('priority') or '')}</span>"
        "</li>"
        for t in tasks
    )
    return f"<ul>{rows}</ul>"


REMINDER_SECTIONS = (
    ("tomorrow", "Due tomorrow or overdue", "#ef4444"),
    ("three_days", "Due in the next 3 days", "#f59e0b"),
    ("week", "Due this week", "#3b82f6"),
)


def render_due_date_reminder(*, to: str, name: str, groups: dict[str, list[dict]]) -> EmailMessage:
    total = sum(len(items) for items in groups.values())
    sections = []
    for key, label, color in REMINDER_SECTIONS:
        items = groups.get(key) or []
        if not items:
            continue
        sections.append(
            f"<h3 style=\"color: {color};\">{label} ({len(items)})</h3>{_task_rows(items)}"
        )
    body = (
        f"<p>Hi {escape(name)},</p>"
        f"<p>You have {total} task{'s' if total != 1 else ''} coming due.</p>"
        + "".join(sections)
        + _button(f"{settings.APP_URL.rstrip('/')}/tasks", "Open my tasks")
    )
    subject = f"⏰ You have {total} task{'s' if total != 1 else ''} due soon"
    return _message(to, subject, _layout("Upcoming due dates", body, "#ef4444"))


def render_digest(
    *,
    to: str,
    name: str,
    digest_type: str,
    tasks: list[dict],
    notifications: list[dict],
    stats: dict[str, int],
) -> EmailMessage:
    label = "Daily" if digest_type == "daily" else "Weekly"
    period = "today" if digest_type == "daily" else "this week"
    stat_cells = "".join(
        f"<td style=\"padding: 8px 16px; text-align: center;\">"
        f"<div style=\"font-size: 20px; font-weight: bold;\">{value}</div>"
        f"<div style=\"font-size: 12px;\">{escape(key.replace('_', ' ').title())}</div></td>"
        for key, value in stats.items()
    )
    body = f"<p>Hi {escape(name)}, here is what happened {period}.</p>"
    body += f"<table><tr>{stat_cells}</tr></table>"
    if tasks:
        body += f"<h3>Your tasks ({len(tasks)})</h3>{_task_rows(tasks)}"
    if notifications:
        items = "".join(
            f"<li><strong>{escape(n['title'])}</strong>: {escape(n['message'])}</li>"
            for n in notifications
        )
        body += f"<h3>Notifications ({len(notifications)})</h3><ul>{items}</ul>"
    body += _button(settings.APP_URL, "Open ProjectHub")
    subject = f"Your {label} {BRAND} Digest"
    return _message(to, subject, _layout(f"{label} Digest", body))


# =============================================================================
# Privacy
# =============================================================================

def render_data_export(*, to: str, name: str, summary: dict[str, int], export_json: str) -> EmailMessage:
    import base64

    rows = "".join(
        f"<li>{escape(key.replace('_', ' ').title())}: {value}</li>"
        for key, value in summary.items()
    )
    body = (
        f"<p>Hi {escape(name)},</p>"
        "<p>Your data export is attached as a JSON file. It contains:</p>"
        f"<ul>{rows}</ul>"
    )
    message = _message(to, f"Your {BRAND} data export", _layout("Your data export", body))
    message.attachments.append({
        "filename": "projecthub-data-export.json",
        "content": base64.b64encode(export_json.encode("utf-8")).decode("ascii"),
    })
    return message


def render_account_deleted(*, to: str, name: str) -> EmailMessage:
    body = (
        f"<p>Hi {escape(name)},</p>"
        f"<p>Your {BRAND} account and personal data have been deleted. "
        "Tasks you created remain in their organizations without your name.</p>"
    )
    return _message(to, f"Your {BRAND} account has been deleted", _layout("Account deleted", body))

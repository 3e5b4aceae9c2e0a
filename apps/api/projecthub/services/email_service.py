"""Transactional email transport.

Senders share one small interface so request handlers and scheduled jobs can
be handed whichever transport ``EMAIL_PROVIDER`` selects (or a fake in tests).
"""

from __future__ import annotations

import html as html_module
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from projecthub.core.config import settings
from projecthub.core.errors import TransportError
from projecthub.jobs.utils import mask_email

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_TIMEOUT_SECONDS = 20.0


@dataclass
class EmailMessage:
    to: list[str]
    subject: str
    html: str
    text: str | None = None
    attachments: list[dict] = field(default_factory=list)

    def plain_text(self) -> str:
        return self.text or html_to_text(self.html)


class EmailSender(Protocol):
    def send(self, message: EmailMessage) -> str | None:
        """Deliver ``message``; return the provider message id. Raise TransportError."""
        ...


def html_to_text(content: str) -> str:
    """Rough plain-text alternative for clients that don't render HTML."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", content, flags=re.DOTALL | re.I)
    text = re.sub(r"<br\s*/?>|</p>|</div>|</li>|</h\d>", "\n", text, flags=re.I)
    text = re.sub(r"<[^>]+>", "", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text).strip()
    return html_module.unescape(text)


# =============================================================================
# Senders
# =============================================================================

class LogEmailSender:
    """Dry-run sender: logs instead of delivering (local dev, no provider keys)."""

    def send(self, message: EmailMessage) -> str | None:
        logger.info(
            "[DRY RUN] Email send skipped to=%s subject=%r",
            ",".join(mask_email(addr) for addr in message.to),
            message.subject,
        )
        return None


class ResendEmailSender:
    def __init__(self, api_key: str, from_email: str, client: httpx.Client | None = None):
        self.api_key = api_key
        self.from_email = from_email
        self._client = client

    def send(self, message: EmailMessage) -> str | None:
        payload: dict[str, object] = {
            "from": self.from_email,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
            "text": message.plain_text(),
        }
        if message.attachments:
            payload["attachments"] = message.attachments
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        client = self._client or httpx.Client(timeout=RESEND_TIMEOUT_SECONDS)
        try:
            response = client.post(RESEND_SEND_URL, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"Email provider request failed: {exc.__class__.__name__}") from exc
        finally:
            if self._client is None:
                client.close()

        if response.status_code >= 300:
            raise TransportError(f"Email provider returned {response.status_code}")
        try:
            message_id = response.json().get("id")
        except ValueError:
            # 2xx without a JSON body: accepted, no message id
            logger.warning("Email provider returned a non-JSON body (status=%s)", response.status_code)
            message_id = None
        logger.info(
            "Email sent to=%s message_id=%s",
            ",".join(mask_email(addr) for addr in message.to),
            message_id,
        )
        return message_id


class SESEmailSender:
    def __init__(self, from_email: str, client=None):
        self.from_email = from_email
        self._client = client

    @property
    def client(self):
        if self._client is None:
            import boto3

            self._client = boto3.client(
                "ses",
                region_name=settings.AWS_REGION,
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
            )
        return self._client

    def send(self, message: EmailMessage) -> str | None:
        from botocore.exceptions import BotoCoreError, ClientError

        if message.attachments:
            return self._send_raw(message)
        try:
            result = self.client.send_email(
                Source=self.from_email,
                Destination={"ToAddresses": message.to},
                Message={
                    "Subject": {"Data": message.subject, "Charset": "UTF-8"},
                    "Body": {
                        "Html": {"Data": message.html, "Charset": "UTF-8"},
                        "Text": {"Data": message.plain_text(), "Charset": "UTF-8"},
                    },
                },
            )
        except (BotoCoreError, ClientError) as exc:
            raise TransportError(f"SES send failed: {exc.__class__.__name__}") from exc
        return result.get("MessageId")

    def _send_raw(self, message: EmailMessage) -> str | None:
        import base64
        from email.mime.application import MIMEApplication
        from email.mime.multipart import MIMEMultipart
        from email.mime.text import MIMEText

        from botocore.exceptions import BotoCoreError, ClientError

        mime = MIMEMultipart("mixed")
        mime["Subject"] = message.subject
        mime["From"] = self.from_email
        mime["To"] = ", ".join(message.to)
        body = MIMEMultipart("alternative")
        body.attach(MIMEText(message.plain_text(), "plain", "utf-8"))
        body.attach(MIMEText(message.html, "html", "utf-8"))
        mime.attach(body)
        for attachment in message.attachments:
            part = MIMEApplication(base64.b64decode(attachment["content"]))
            part.add_header("Content-Disposition", "attachment", filename=attachment["filename"])
            mime.attach(part)

        try:
            result = self.client.send_raw_email(
                Source=self.from_email,
                Destinations=message.to,
                RawMessage={"Data": mime.as_string()},
            )
        except (BotoCoreError, ClientError) as exc:
            raise TransportError(f"SES send failed: {exc.__class__.__name__}") from exc
        return result.get("MessageId")


def build_email_sender() -> EmailSender:
    """Pick the transport configured by ``EMAIL_PROVIDER``."""
    provider = settings.EMAIL_PROVIDER.strip().lower()
    if provider == "resend" and settings.RESEND_API_KEY:
        return ResendEmailSender(settings.RESEND_API_KEY, settings.EMAIL_FROM)
    if provider == "ses":
        return SESEmailSender(settings.EMAIL_FROM)
    if provider not in ("log", ""):
        logger.warning("Email provider %r not usable, falling back to dry run", provider)
    return LogEmailSender()


def send_best_effort(sender: EmailSender, message: EmailMessage, *, context: str) -> bool:
    """
    Send a side-channel email after the core write has committed.

    Failures are logged and reported as False; they never undo the write.
    """
    try:
        sender.send(message)
        return True
    except TransportError as exc:
        logger.warning("Email for %s failed: %s", context, exc.message)
        return False

"""Shared helpers for scheduled jobs and outbound deliveries."""

from __future__ import annotations

from datetime import datetime, time, timezone
from urllib.parse import urlsplit


def mask_email(email: str | None) -> str:
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def safe_url(url: str | None) -> str:
    """Drop query string and credentials before logging a URL."""
    if not url:
        return ""
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://{host}{parts.path}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def end_of_day(value: datetime) -> datetime:
    """Last representable instant of ``value``'s calendar day (same tz)."""
    return datetime.combine(value.date(), time.max, tzinfo=value.tzinfo)

"""Outbound URL validation for customer-configured webhooks (SSRF defense)."""

from __future__ import annotations

import ipaddress
import socket
from urllib.parse import urlsplit, urlunsplit

from projecthub.core.errors import ValidationError

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _resolve_host(host: str, port: int) -> set[IPAddress]:
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except OSError as exc:
        raise ValidationError("Webhook URL host could not be resolved") from exc

    resolved: set[IPAddress] = set()
    for info in infos:
        sockaddr = info[4]
        if not sockaddr:
            continue
        try:
            resolved.add(ipaddress.ip_address(sockaddr[0]))
        except ValueError:
            continue
    return resolved


def validate_outbound_webhook_url(url: str) -> str:
    """
    Validate a webhook target URL supplied by an organization admin.

    Only https URLs without credentials or fragments whose host resolves
    exclusively to publicly routable addresses are accepted.

    Returns the normalized URL or raises ValidationError.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise ValidationError("Webhook URL is required")

    parts = urlsplit(candidate)
    scheme = (parts.scheme or "").lower()
    if scheme != "https":
        raise ValidationError("Webhook URL must start with https://")
    if parts.username or parts.password:
        raise ValidationError("Webhook URL must not include credentials")
    if parts.fragment:
        raise ValidationError("Webhook URL must not include a fragment")

    host = (parts.hostname or "").strip().lower().rstrip(".")
    if not host:
        raise ValidationError("Webhook URL must include a host")

    try:
        addresses = {ipaddress.ip_address(host)}
    except ValueError:
        addresses = _resolve_host(host, parts.port or 443)

    if not addresses:
        raise ValidationError("Webhook URL host could not be resolved")
    if any(not address.is_global for address in addresses):
        raise ValidationError("Webhook URL host is not allowed")

    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, ""))

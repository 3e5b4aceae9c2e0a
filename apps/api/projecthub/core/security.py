"""Identity token verification and shared-secret helpers."""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from projecthub.core.config import settings


# =============================================================================
# Identity tokens (issued by the identity provider)
# =============================================================================

def create_identity_token(user_id: UUID, email: str, expires_hours: int = 1) -> str:
    """
    Sign an identity JWT with the current secret.

    Used by the CLI and tests; production tokens come from the identity provider
    and carry the same ``sub``/``email`` claims.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(hours=expires_hours),
    }
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_identity_token(token: str) -> dict:
    """
    Decode and verify an identity JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    options = {"require": ["sub", "exp"]}
    audience = settings.JWT_AUDIENCE or None
    last_error: jwt.InvalidTokenError | None = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                audience=audience,
                options=options,
            )
        except jwt.InvalidTokenError as e:
            last_error = e
    raise last_error  # type: ignore[misc]


# =============================================================================
# Random tokens and HMAC signatures
# =============================================================================

def generate_token(nbytes: int = 32) -> str:
    """Hex token with ``nbytes`` of entropy (64 chars for the default)."""
    return secrets.token_hex(nbytes)


def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Constant-time comparison of a received signature."""
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature.strip().lower())


def secrets_match(provided: str | None, expected: str) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))

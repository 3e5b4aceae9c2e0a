"""Error taxonomy shared by services and routers.

Services raise these; the handlers registered in ``projecthub.main`` render
them as ``{"error": message, "details": ...}`` with the class status code.
"""

from typing import Any


class AppError(Exception):
    """Base class for expected application failures."""

    status_code: int = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    """Missing or malformed input."""

    status_code = 400


class InvitationExpiredError(ValidationError):
    """Invitation was past its expiry when redeemed."""

    def __init__(self, message: str = "Invitation has expired", details: Any = None):
        super().__init__(message, details)


class PermissionDeniedError(AppError):
    """Caller lacks the role, or a plan limit was reached."""

    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """State conflict: duplicate, already consumed, or last owner."""

    status_code = 409


class TransportError(AppError):
    """Outbound delivery (email, webhook, chat) failed."""

    status_code = 502

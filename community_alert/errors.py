"""Error taxonomy shared by the real-time core and the HTTP routes.

Every error carries a ``reason``: the short, client-facing string that ends up
in ``{"error": reason}`` payloads or in an ``HTTPException`` detail.
"""

from fastapi import status


class AlertPlatformError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_reason = "Server error"

    def __init__(self, reason: str | None = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


# ============ Connection-time ============


class AuthError(AlertPlatformError):
    """Rejects a connection before a session exists."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_reason = "Authentication error"


class MissingCredential(AuthError):
    default_reason = "Authentication error: No token provided"


class InvalidCredential(AuthError):
    default_reason = "Authentication error: Invalid token"


class UnknownUser(AuthError):
    default_reason = "Authentication error: User not found"


# ============ Requester-scoped ============


class AccessDenied(AlertPlatformError):
    status_code = status.HTTP_403_FORBIDDEN
    default_reason = "Access denied"


class NotFound(AlertPlatformError):
    status_code = status.HTTP_404_NOT_FOUND
    default_reason = "Not found"


class PersistFailed(AlertPlatformError):
    default_reason = "Failed to send message"


class ValidationError(AlertPlatformError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_reason = "Invalid payload"


class Conflict(AlertPlatformError):
    """A write collided with a unique constraint."""

    status_code = status.HTTP_409_CONFLICT
    default_reason = "Record already exists"

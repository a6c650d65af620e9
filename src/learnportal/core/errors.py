"""Error taxonomy for the portal engine.

Authentication, session and validation errors are converted into
result objects at the AuthService boundary; persistence errors are
fatal for the single operation that raised them.
"""

from __future__ import annotations

from enum import Enum


class AuthFailure(str, Enum):
    """Why an authentication attempt was rejected."""

    USER_NOT_FOUND = "user_not_found"
    ACCOUNT_DISABLED = "account_disabled"
    INVALID_CREDENTIALS = "invalid_credentials"


# Messages shown to the caller. Credential mismatch and unknown users
# share one generic message.
AUTH_FAILURE_MESSAGES = {
    AuthFailure.USER_NOT_FOUND: "Invalid credentials",
    AuthFailure.ACCOUNT_DISABLED: "User account is disabled",
    AuthFailure.INVALID_CREDENTIALS: "Invalid credentials",
}


class PortalError(Exception):
    """Base class for engine errors."""


class AuthenticationError(PortalError):
    """Raised when credentials cannot be verified."""

    def __init__(self, reason: AuthFailure, username: str = ""):
        self.reason = reason
        self.username = username
        super().__init__(AUTH_FAILURE_MESSAGES[reason])


class SessionError(PortalError):
    """Raised for invalid, missing or expired session tokens."""


class ValidationError(PortalError):
    """Raised for malformed input (registration, progress values)."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class PersistenceError(PortalError):
    """Raised when a local write fails."""

    def __init__(self, table: str, message: str):
        self.table = table
        super().__init__(f"Failed to persist '{table}': {message}")


class AccessDeniedError(PortalError):
    """Raised when a non-admin calls an admin-only operation."""

    def __init__(self, message: str = "Access denied: Admin privileges required"):
        super().__init__(message)


class NotFoundError(PortalError):
    """Raised when an admin operation targets a user that does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")

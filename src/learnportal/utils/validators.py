"""Input validation helpers.

Username conventions:
- 3+ characters by default (configurable)
- letters, digits, "_", "-" and "." only, since the username doubles as
  the on-disk namespace of the user's tables

Functions:
- validate_username(username, min_length) -> str: Normalized username
- validate_password(password, min_length) -> str
- parse_role(value) -> Role
"""

import re

from learnportal.core.errors import ValidationError
from learnportal.core.models import Role

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")
MAX_USERNAME_LENGTH = 64


def validate_username(username: str, min_length: int = 3) -> str:
    """Check a username for registration.

    Args:
        username: Raw username as typed
        min_length: Minimum accepted length

    Returns:
        The username with surrounding whitespace removed

    Raises:
        ValidationError: If the username is too short, too long or has
            characters outside the allowed set
    """
    value = (username or "").strip()
    if len(value) < min_length:
        raise ValidationError(
            f"Username must be at least {min_length} characters", field="username"
        )
    if len(value) > MAX_USERNAME_LENGTH:
        raise ValidationError(
            f"Username must be at most {MAX_USERNAME_LENGTH} characters", field="username"
        )
    if not USERNAME_PATTERN.match(value) or value in (".", ".."):
        raise ValidationError(
            "Username may only contain letters, digits, '_', '-' and '.'",
            field="username",
        )
    return value


def validate_password(password: str, min_length: int = 4) -> str:
    """Check a password for registration.

    Raises:
        ValidationError: If the password is shorter than min_length
    """
    if len(password or "") < min_length:
        raise ValidationError(
            f"Password must be at least {min_length} characters", field="password"
        )
    return password


def parse_role(value: str | Role) -> Role:
    """Convert a role name to Role.

    Raises:
        ValidationError: For unknown role names
    """
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).lower())
    except ValueError:
        raise ValidationError(f"Unknown role: {value}", field="role") from None

"""Error kinds raised by the account subsystem.

Every error carries a stable HTTP status and a public message that is safe to
return to callers. Internal detail stays on the exception (and in the logs).
"""
from __future__ import annotations

from typing import Optional


class AccountError(Exception):
    """Base class for all account subsystem failures."""

    status_code = 400
    public_message = "Bad request"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)

    @property
    def detail(self) -> str:
        return self.public_message


class ValidationError(AccountError):
    """A required field is missing or malformed."""

    status_code = 400
    public_message = "Invalid request"

    @property
    def detail(self) -> str:
        # Validation messages are written by us and never contain user secrets.
        return str(self)


class DuplicateEmailError(AccountError):
    status_code = 409
    public_message = "A user with that email already exists"


class AuthError(AccountError):
    """Unknown email or wrong password.

    ``reason`` is kept for logging only; callers always see the same message.
    """

    status_code = 400
    public_message = "Invalid email or password"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Authentication failed ({reason})")
        self.reason = reason


class NotAuthenticatedError(AccountError):
    status_code = 401
    public_message = "Not authenticated"


class TransportRestrictionError(AccountError):
    status_code = 403
    public_message = "This operation requires a secure (HTTPS) connection"


class InvalidOrExpiredTokenError(AccountError):
    status_code = 400
    public_message = "Reset token is invalid or has expired"


class MalformedResetStringError(AccountError):
    status_code = 400
    public_message = "Reset code is malformed"


class NotFoundError(AccountError):
    status_code = 404
    public_message = "User not found"


class StoreError(AccountError):
    """Unclassified persistence failure."""

    status_code = 500
    public_message = "Internal server error"


__all__ = [
    "AccountError",
    "AuthError",
    "DuplicateEmailError",
    "InvalidOrExpiredTokenError",
    "MalformedResetStringError",
    "NotAuthenticatedError",
    "NotFoundError",
    "StoreError",
    "TransportRestrictionError",
    "ValidationError",
]

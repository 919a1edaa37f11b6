from __future__ import annotations

import enum
from typing import Any


class CodeError(str, enum.Enum):
    """Why a verification code was refused."""

    NO_SESSION = "no_session"
    EXPIRED = "expired"
    MISMATCH = "mismatch"


class AuthError(Exception):
    """Expected, user-recoverable failure. Rendered as a structured JSON body."""

    status_code = 400
    code = "error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message, **self.extra}


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class AlreadyExists(AuthError):
    status_code = 409
    code = "already_registered"
    default_message = "Email already registered. Please login instead."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "User not found"


class InvalidCredentials(AuthError):
    # same message for unknown email and wrong password
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid email or password"


class NotVerified(AuthError):
    status_code = 403
    code = "not_verified"
    default_message = "Please verify your email first. Check your inbox for the verification code."


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, blocked_minutes: int) -> None:
        self.blocked_minutes = blocked_minutes
        super().__init__(
            f"Too many failed attempts. Please try again in {blocked_minutes} minutes.",
            blocked=True,
            blockedMinutes=blocked_minutes,
        )


class InvalidOrExpiredCode(AuthError):
    status_code = 400
    code = "invalid_or_expired_code"
    default_message = "Invalid or expired verification code"


class InvalidToken(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"

"""
auth/errors.py -- Failure taxonomy for the auth core.

Every failure the core can surface is an AuthError subclass carrying a
stable machine-readable `code`, the HTTP `status_code` the transport should
use, and a user-facing `message`. The API layer has exactly one handler for
the whole hierarchy; anything that is not an AuthError (store failures,
bugs) falls through to the generic 500 handler.

InvalidCredentialsError deliberately has one message for both "unknown
email" and "wrong password" so the API never reveals which accounts exist.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    status_code = 400
    message = "Request could not be processed."

    def __init__(self, message: str | None = None, *, errors: list[dict] | None = None) -> None:
        self.message = message or self.message
        self.errors = errors
        super().__init__(self.message)


class ValidationFailed(AuthError):
    code = "validation_error"
    status_code = 400
    message = "Validation failed."


class PasswordPolicyError(ValidationFailed):
    message = "Password does not meet requirements."

    def __init__(self, violations: list[str], field: str = "password") -> None:
        self.violations = violations
        super().__init__(errors=[{"field": field, "message": v} for v in violations])


class DuplicateEmailError(AuthError):
    code = "duplicate_email"
    status_code = 409
    message = "User with this email already exists."


class InvalidCredentialsError(AuthError):
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid email or password."


class AccountLockedError(AuthError):
    code = "account_locked"
    status_code = 423
    message = "Account is temporarily locked due to too many failed login attempts."


class AccountNotActiveError(AuthError):
    code = "account_not_active"
    status_code = 401
    message = "User account is not active."


class TokenMissingError(AuthError):
    code = "no_token"
    status_code = 401
    message = "Access token is required."


class TokenExpiredError(AuthError):
    code = "token_expired"
    status_code = 401
    message = "Authentication token has expired."


class TokenInvalidError(AuthError):
    code = "token_invalid"
    status_code = 401
    message = "Invalid authentication token."

    def __init__(self, reason: str = "bad_signature") -> None:
        self.reason = reason
        super().__init__()


class UserNotFoundError(AuthError):
    code = "user_not_found"
    status_code = 401
    message = "User not found."


class SessionNotFoundError(AuthError):
    code = "session_not_found"
    status_code = 401
    message = "Refresh token is invalid or has expired."


class RefreshTokenReuseError(SessionNotFoundError):
    """A refresh token that rotation already retired was presented again."""

    def __init__(self, user_id: str, revoked: int) -> None:
        self.user_id = user_id
        self.revoked = revoked
        super().__init__()


class ForbiddenError(AuthError):
    code = "forbidden"
    status_code = 403
    message = "Insufficient permissions."


class NotFoundError(AuthError):
    code = "not_found"
    status_code = 404
    message = "Resource not found."

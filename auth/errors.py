"""
auth/errors.py -- Service-layer exceptions mapped to HTTP responses.

Every exception carries a stable error_code and an HTTP status_code as class
attributes; api/main.py turns them into the standard error envelope. Specific
subclasses exist so callers and tests can match on the exact failure without
comparing message strings.

Enumeration resistance: InvalidCredentials is the only error login raises for
an unknown email, an unverified account, or a wrong password.
"""

from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "bad_request"
    default_message: str = "Something went wrong !"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail


# ---------------------------------------------------------------------------
# Malformed or missing input (400)
# ---------------------------------------------------------------------------


class ValidationError(ServiceError):
    status_code = 400
    error_code = "validation_error"
    default_message = "Request validation failed."


class EmailRequired(ValidationError):
    default_message = "Email is required !"


class PasswordRequired(ValidationError):
    default_message = "Password is required !"


class FirstNameRequired(ValidationError):
    default_message = "First name is required !"


class LastNameRequired(ValidationError):
    default_message = "Last name is required !"


# ---------------------------------------------------------------------------
# Policy violations (400)
# ---------------------------------------------------------------------------


class PolicyViolation(ServiceError):
    status_code = 400
    error_code = "policy_violation"


class EmailUnavailable(PolicyViolation):
    error_code = "email_unavailable"
    default_message = "Email is unavailable !"


class PasswordTooShort(PolicyViolation):
    error_code = "password_too_short"
    default_message = "Password must be at least 8 characters long !"


class PasswordNotStrong(PolicyViolation):
    error_code = "password_not_strong"
    default_message = "Password must contain a lowercase letter, an uppercase letter and a digit !"


class AccountAlreadyConfirmed(PolicyViolation):
    error_code = "account_already_confirmed"
    default_message = "Account already confirmed !"


class TokenExpired(PolicyViolation):
    error_code = "token_expired"
    default_message = "Token expired !"


# ---------------------------------------------------------------------------
# Authentication failures (400 for credentials, 403 for the access guard)
# ---------------------------------------------------------------------------


class AuthenticationError(ServiceError):
    status_code = 403
    error_code = "forbidden"
    default_message = "You must be authenticated to access this resource."
    # Responses for these errors also expire the client's session cookie.
    clears_session_cookie: bool = False


class InvalidCredentials(AuthenticationError):
    status_code = 400
    error_code = "invalid_credentials"
    default_message = "Invalid credentials !"


class AlreadyAuthenticated(AuthenticationError):
    error_code = "already_authenticated"
    default_message = "You are already logged in."


class NoSessionCookie(AuthenticationError):
    error_code = "no_session_cookie"
    default_message = "No session cookie found. Please login to continue."


class Forbidden(AuthenticationError):
    clears_session_cookie = True


class SessionExpired(AuthenticationError):
    error_code = "session_expired"
    default_message = "Your session has expired. Please login again."
    clears_session_cookie = True


# ---------------------------------------------------------------------------
# Unknown records (404)
# ---------------------------------------------------------------------------


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"
    default_message = "Resource not found."


class InvalidToken(NotFoundError):
    error_code = "invalid_token"
    default_message = "Invalid account confirmation token !"


class UserNotFound(NotFoundError):
    error_code = "user_not_found"
    default_message = "Couldn't find user !"


# ---------------------------------------------------------------------------
# Conflicts (409) and unexpected failures (500)
# ---------------------------------------------------------------------------


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"
    default_message = "Resource already exists."


class ConfirmationTokenConflict(ConflictError):
    error_code = "confirmation_token_exists"
    default_message = "An account confirmation token is already pending for this user."


class InternalError(ServiceError):
    status_code = 500
    error_code = "internal_error"
    default_message = "An unexpected error occurred."

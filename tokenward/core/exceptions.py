from __future__ import annotations

"""Structured exception hierarchy for tokenward.

Every expected failure of the authentication core is a distinct exception
class, so callers handle each kind explicitly. Each carries a machine-readable
`code` (the error kind) and a human-readable `message` suitable for logs.
Internal kinds are deliberately precise; use `public_error()` to obtain the
vague, enumeration-safe form for external responses.
"""

from typing import Final

from tokenward.utils.i18n import get_translated_message

__all__: Final = [
    "TokenwardError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "AccountDisabledError",
    "UserAlreadyExistsError",
    "UserNotFoundError",
    "TokenError",
    "InvalidTokenError",
    "InvalidSignatureError",
    "MalformedTokenError",
    "WrongKindError",
    "TokenNotFoundError",
    "TokenExpiredError",
    "TokenReuseDetectedError",
    "TokenRevokedError",
    "AlreadyConsumedError",
    "PurposeMismatchError",
    "ValidationError",
    "PasswordPolicyError",
    "InvalidOldPasswordError",
    "RateLimitExceededError",
    "InfrastructureError",
    "StoreUnavailableError",
    "public_error",
]


class TokenwardError(Exception):
    """Base exception class for all custom errors in tokenward.

    Attributes:
        message (str): A human-readable error message, suitable for logging.
        code (str): A unique, machine-readable error code.
    """

    __slots__ = ("message", "code")

    default_key: str = "authentication_failed"
    default_code: str = "generic_error"

    def __init__(self, message: str | None = None, code: str | None = None):
        self.message = message if message is not None else get_translated_message(self.default_key)
        self.code = code or self.default_code
        Exception.__init__(self, self.message)

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Identity / credential errors
# ---------------------------------------------------------------------------


class AuthenticationError(TokenwardError):
    """Base for failures proving who the caller is. Maps to `401 Unauthorized`."""

    default_code = "authentication_error"


class InvalidCredentialsError(AuthenticationError):
    """Raised when email/password do not match an identity.

    Raised identically for an unknown email and a wrong password.
    """

    default_key = "invalid_credentials"
    default_code = "invalid_credentials"


class AccountDisabledError(AuthenticationError):
    """Raised when a disabled identity tries to log in or refresh."""

    default_key = "account_disabled"
    default_code = "account_disabled"


class UserAlreadyExistsError(TokenwardError):
    """Raised on registration with an email that is already taken. Maps to `409 Conflict`."""

    default_key = "user_already_exists"
    default_code = "already_exists"


class UserNotFoundError(TokenwardError):
    """Raised when an identity referenced by id no longer exists."""

    default_key = "user_not_found"
    default_code = "user_not_found"


# ---------------------------------------------------------------------------
# Token errors
# ---------------------------------------------------------------------------


class TokenError(AuthenticationError):
    """Base for every token lifecycle failure."""

    default_key = "invalid_token"
    default_code = "token_error"


class InvalidTokenError(TokenError):
    """Base for tokens that cannot be trusted at all (signature, structure, kind)."""

    default_key = "invalid_token"
    default_code = "invalid_token"


class InvalidSignatureError(InvalidTokenError):
    """The token's signature does not verify against the configured key."""

    default_key = "invalid_signature"
    default_code = "invalid_signature"


class MalformedTokenError(InvalidTokenError):
    """The token cannot be decoded or its claims are missing or ill-typed."""

    default_key = "malformed_token"
    default_code = "malformed"


class WrongKindError(InvalidTokenError):
    """A token of one kind was presented where another kind is required."""

    default_key = "wrong_token_kind"
    default_code = "wrong_kind"


class PurposeMismatchError(InvalidTokenError):
    """A one-shot token was redeemed for a purpose other than the one it was issued for."""

    default_key = "token_purpose_mismatch"
    default_code = "purpose_mismatch"


class TokenNotFoundError(TokenError):
    """No server-side record exists for the presented token id."""

    default_key = "token_not_found"
    default_code = "token_not_found"


class TokenExpiredError(TokenError):
    """The token's expires-at lies in the past."""

    default_key = "token_expired"
    default_code = "token_expired"


class TokenReuseDetectedError(TokenError):
    """A consumed refresh token was presented again.

    By the time this is raised the whole token family has been revoked.
    """

    default_key = "token_reuse_detected"
    default_code = "token_reuse_detected"

    def __init__(self, message: str | None = None, code: str | None = None, family_id: str | None = None):
        super().__init__(message, code)
        self.family_id = family_id


class TokenRevokedError(TokenError):
    """The token's family or subject has been revoked."""

    default_key = "token_revoked"
    default_code = "revoked"


class AlreadyConsumedError(TokenError):
    """A one-shot token was redeemed a second time."""

    default_key = "token_already_consumed"
    default_code = "already_consumed"


# ---------------------------------------------------------------------------
# Validation errors (typically map to 400 Bad Request)
# ---------------------------------------------------------------------------


class ValidationError(TokenwardError):
    """Raised for general input validation failures."""

    default_code = "validation_error"


class PasswordPolicyError(ValidationError):
    """Raised when a password does not meet the configured security policy."""

    default_code = "password_policy_error"


class InvalidOldPasswordError(ValidationError):
    """Raised when the current password given for a password change is wrong."""

    default_key = "invalid_old_password"
    default_code = "invalid_old_password"


# ---------------------------------------------------------------------------
# Operational errors
# ---------------------------------------------------------------------------


class RateLimitExceededError(TokenwardError):
    """Raised when the external rate-limit policy rejects an attempt. Maps to `429`."""

    default_key = "rate_limit_exceeded"
    default_code = "rate_limit_exceeded"


class InfrastructureError(TokenwardError):
    """Base for failures of collaborators (stores, transports), not of the caller's input."""

    default_key = "store_unavailable"
    default_code = "infrastructure_error"


class StoreUnavailableError(InfrastructureError):
    """A persistence round trip kept failing after the retry policy was exhausted."""

    default_key = "store_unavailable"
    default_code = "store_unavailable"


# Internal error kinds collapse into these external codes so responses never
# reveal whether an account exists or why exactly a token was refused.
_PUBLIC_CODES: dict[type[TokenwardError], tuple[str, str]] = {
    InvalidCredentialsError: ("authentication_failed", "authentication_failed"),
    AccountDisabledError: ("authentication_failed", "authentication_failed"),
    UserNotFoundError: ("authentication_failed", "authentication_failed"),
    TokenReuseDetectedError: ("invalid_token", "invalid_token"),
    TokenError: ("invalid_token", "invalid_token"),
    PasswordPolicyError: ("validation_error", ""),
    ValidationError: ("validation_error", ""),
    UserAlreadyExistsError: ("already_exists", "user_already_exists"),
    RateLimitExceededError: ("rate_limit_exceeded", "rate_limit_exceeded"),
    InfrastructureError: ("service_unavailable", "store_unavailable"),
}


def public_error(exc: TokenwardError, language: str = "en") -> dict[str, str]:
    """Return the enumeration-safe ``{"code", "message"}`` form of ``exc``.

    The most specific registered ancestor of ``exc`` decides the external code.
    Validation errors keep their own message since it only describes the
    caller's input.
    """
    for klass in type(exc).__mro__:
        if klass in _PUBLIC_CODES:
            code, key = _PUBLIC_CODES[klass]
            message = get_translated_message(key, language) if key else exc.message
            return {"code": code, "message": message}
    return {"code": "error", "message": get_translated_message("authentication_failed", language)}

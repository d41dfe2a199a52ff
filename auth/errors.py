"""
auth/errors.py -- Exception hierarchy for the auth and account layer.

Every exception carries an HTTP status_code and a stable machine-readable
code. The api/ layer registers one exception handler for CoinServerError and
turns it into the standard error envelope, so route handlers never build
error responses by hand.

The message on each class is the only text a client ever sees. Anything more
specific (which check failed, the raw driver error) goes to the log.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations


class CoinServerError(Exception):
    """Base class for all errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, detail: str | None = None) -> None:
        # detail is for logs only -- it is never sent to the client.
        super().__init__(detail or self.message)
        self.detail = detail


# ---------------------------------------------------------------------------
# 400
# ---------------------------------------------------------------------------


class InvalidInput(CoinServerError):
    """Malformed or missing request fields."""

    status_code = 400
    code = "invalid_input"
    message = "Request is missing required fields or contains invalid values."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail)
        # Validation messages name a field, not internal state, so they are
        # safe to echo back.
        if detail:
            self.message = detail


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------


class Unauthorized(CoinServerError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class InvalidCredentials(Unauthorized):
    """Unknown email or wrong password. Deliberately does not say which."""

    code = "bad_credentials"
    message = "Invalid email or password."


class TokenError(Unauthorized):
    """Base for bearer token validation failures."""


class MalformedToken(TokenError):
    pass


class SignatureMismatch(TokenError):
    pass


class Expired(TokenError):
    pass


class SessionNotFound(Unauthorized):
    """Session id is not (or no longer) present in the session cache."""


# ---------------------------------------------------------------------------
# 403 / 404 / 409
# ---------------------------------------------------------------------------


class Forbidden(CoinServerError):
    status_code = 403
    code = "forbidden"
    message = "This action is not allowed."


class UserNotFound(CoinServerError):
    status_code = 404
    code = "not_found"
    message = "User not found."


class DuplicateUser(CoinServerError):
    status_code = 409
    code = "conflict"
    message = "A user with that email already exists."


# ---------------------------------------------------------------------------
# 5xx
# ---------------------------------------------------------------------------


class SigningError(CoinServerError):
    """Token could not be signed. Fatal to the request, not retryable."""


class DependencyUnavailable(CoinServerError):
    status_code = 502
    code = "dependency_unavailable"
    message = "A backing service is unavailable. Try again later."


class CacheUnavailable(DependencyUnavailable):
    pass

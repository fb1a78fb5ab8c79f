"""
auth/errors.py -- Exception taxonomy for the auth subsystem.

Every error the route layer can surface derives from AuthError and carries the
HTTP status and the client-safe message. api/main.py registers a single
handler for AuthError, so routes raise and never build error responses by hand.

Infrastructure failures (StoreError) carry a generic message only. The
underlying cause is chained via ``raise ... from exc`` and logged server-side;
it is never echoed to the response body.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from typing import Optional

# Safe messages for clients
MSG_INTERNAL_SERVER = "Internal server error"
MSG_UNAUTHORIZED = "Unauthorized"
MSG_NOT_FOUND = "Resource not found"
MSG_BAD_REQUEST = "Invalid request"
MSG_FORBIDDEN = "Access forbidden"


class AuthError(Exception):
    """Base class for auth errors that map to an HTTP response."""

    status_code: int = 400
    message: str = MSG_BAD_REQUEST

    def __init__(self, message: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class BadRequest(AuthError):
    status_code = 400
    message = MSG_BAD_REQUEST


class Unauthorized(AuthError):
    status_code = 401
    message = MSG_UNAUTHORIZED


class Forbidden(AuthError):
    status_code = 403
    message = MSG_FORBIDDEN


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class InvalidCredentials(Unauthorized):
    """Wrong password or unknown username. The two cases are never told apart."""

    message = "credentials are incorrect"


class PendingActivation(Unauthorized):
    """Credentials are valid but the account has not been confirmed yet."""

    message = "account not yet confirmed"


# ---------------------------------------------------------------------------
# Refresh flow
# ---------------------------------------------------------------------------


class TokenInvalid(Unauthorized):
    message = "Invalid refresh token"


class TokenRevoked(Unauthorized):
    message = "Refresh token has been revoked"


class TokenExpired(Unauthorized):
    message = "Refresh token has expired"


class RateLimited(AuthError):
    status_code = 429
    message = "Rate limit exceeded"

    def __init__(self, retry_after: int, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class StoreError(AuthError):
    """I/O failure in the record store. The cause is chained, never shown.

    context describes the failed operation for server-side logs; the client
    always gets MSG_INTERNAL_SERVER.
    """

    status_code = 500
    message = MSG_INTERNAL_SERVER

    def __init__(self, context: str = "store operation failed") -> None:
        super().__init__()
        self.context = context

    def __str__(self) -> str:
        return self.context


class QueryCancelled(StoreError):
    """The query context was cancelled or ran past its deadline."""


class NotFound(AuthError):
    status_code = 404
    message = MSG_NOT_FOUND


class RefreshTokenNotFound(NotFound):
    message = "Refresh token not found"


class AccountNotFound(NotFound):
    message = "Account not found"


class AccountConflict(AuthError):
    status_code = 409
    message = "An account with that username already exists"


# ---------------------------------------------------------------------------
# Password hasher and access token codec (internal, never sent as-is)
# ---------------------------------------------------------------------------


class PasswordMismatch(Exception):
    """Plaintext does not match the stored hash."""


class MalformedHash(Exception):
    """Stored hash could not be parsed as a bcrypt hash."""


class AccessTokenInvalid(Exception):
    """Access token is absent, malformed, or fails signature checks."""


class AccessTokenExpired(AccessTokenInvalid):
    """Access token signature is valid but its exp claim has passed."""

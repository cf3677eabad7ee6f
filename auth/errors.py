"""
auth/errors.py -- Typed failure taxonomy for the auth subsystem.

Every error carries a stable machine-readable code and the HTTP status the
API layer should answer with. Services raise these; api/main.py turns any
ServiceError into the standard {"error": {...}} envelope. Messages are safe
to show to clients -- never put hashes, tokens or SQL in them.

Layer rule: stdlib only.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors that are recovered at the request boundary."""

    status_code: int = 400
    code: str = "validation_error"

    def __init__(self, message: str, *, code: str | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.detail = detail


class ValidationError(ServiceError):
    """Malformed or missing input (400)."""

    status_code = 400
    code = "validation_error"


class ConflictError(ServiceError):
    """Uniqueness violation (409). `field` names the offending column when known."""

    status_code = 409
    code = "conflict"

    def __init__(self, message: str, *, field: str | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.field = field


class AuthenticationError(ServiceError):
    """Missing, invalid or expired credentials (401)."""

    status_code = 401
    code = "unauthorized"


class TokenExpiredError(AuthenticationError):
    code = "token_expired"


class InvalidTokenError(AuthenticationError):
    code = "invalid_token"


class AuthorizationError(ServiceError):
    """Authenticated, but not allowed (403)."""

    status_code = 403
    code = "forbidden"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"


class DependencyError(ServiceError):
    """Database or identity provider unreachable or misbehaving (503)."""

    status_code = 503
    code = "dependency_error"


class RateLimitExceededError(ServiceError):
    """Throttling signal (429). Deliberately not an AuthenticationError."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str = "Too many requests.", *, retry_after: int = 60, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

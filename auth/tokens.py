"""
auth/tokens.py -- JWT session token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry only the user id (`sub`), `iat`
       and `exp`. Role and active flag are re-read from the store on every
       request, so a demotion or deactivation takes effect immediately even
       though the token itself is stateless.

  Expiry: checked against the service's injected clock rather than jose's
       internal wall clock, so tests can move time forward deterministically.
       jose still verifies the signature and algorithm.

  Failures: verify() raises exactly two things -- TokenExpiredError and
       InvalidTokenError. The authentication dependency maps them to distinct
       401 responses.

  Secret: sourced from core.config.get_settings(). Settings refuses to load
       without a 32+ character JWT_SECRET, so TokenService.from_settings()
       fails at startup, not on the first request.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import InvalidTokenError, TokenExpiredError
from core.config import Settings

_ALGORITHM = "HS256"

DEFAULT_EXPIRE_SECONDS = 7 * 24 * 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issue and verify signed, time-limited bearer tokens.

    Usage:
        tokens = TokenService(secret_key=settings.jwt_secret)
        token = tokens.issue(user.id)
        user_id = tokens.verify(token)   # "42"
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int = DEFAULT_EXPIRE_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenService requires a signing secret.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(secret_key=settings.jwt_secret, expire_seconds=settings.jwt_expire_seconds)

    def issue(self, user_id: int | str) -> str:
        """Encode a signed JWT for user_id, expiring expire_seconds from now."""
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.expire_seconds)).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> str:
        """Return the user id embedded in token.

        Raises:
            TokenExpiredError: the token's exp has passed.
            InvalidTokenError: bad signature, wrong algorithm, or malformed payload.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                # Expiry is checked below against the injected clock only;
                # jose does not check exp at all.
                options={"verify_exp": False},
            )
        except (JWTError, AttributeError, TypeError, ValueError) as exc:
            raise InvalidTokenError("The provided token is invalid.") from exc

        subject = payload.get("sub")
        expires_at = payload.get("exp")
        if not isinstance(subject, str) or not subject:
            raise InvalidTokenError("The provided token is invalid.")
        if not isinstance(expires_at, (int, float)) or isinstance(expires_at, bool):
            raise InvalidTokenError("The provided token is invalid.")
        if expires_at <= self._clock().timestamp():
            raise TokenExpiredError("Your session has expired. Please log in again.")
        return subject

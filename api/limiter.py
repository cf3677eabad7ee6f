"""
api/limiter.py -- Per-bucket rate limiting on top of slowapi's `limits` engine.

RateLimits holds one RateLimitItem per bucket ("general", "register",
"login", "oauth") and counts hits with the moving-window strategy over a
single storage. A request is admitted only while fewer than the bucket's
limit were admitted for the same client inside the trailing window; a
rejected request is not recorded, so hammering a limited endpoint does not
extend the lockout. Bucket and client are both part of the key, so a login
attempt never consumes the register budget.

Clients are keyed with slowapi's get_remote_address. The instance is built
once in the lifespan and stored on app.state.rate_limits -- route
dependencies look it up there, so every request shares the same counters.

Limitation: with the default "memory://" storage, state lives in process
memory. Behind several workers each process enforces its own limit; set
RATE_LIMIT_STORAGE_URI to a redis:// URI (with the redis client installed)
to share counters.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable

from fastapi import Request
from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter
from slowapi.util import get_remote_address

from auth.errors import RateLimitExceededError
from core.config import Settings


class RateLimits:
    """Named, independent moving-window buckets sharing one storage."""

    def __init__(self, items: dict[str, RateLimitItem], storage_uri: str = "memory://") -> None:
        for bucket, item in items.items():
            if item.amount < 1:
                raise ValueError(f"Rate limit for {bucket!r} must allow at least one request")
        self._items = items
        self._limiter = MovingWindowRateLimiter(storage_from_string(storage_uri))

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimits:
        window = settings.rate_limit_window_seconds
        return cls(
            {
                "general": RateLimitItemPerSecond(settings.general_rate_limit, window),
                "register": RateLimitItemPerSecond(settings.register_rate_limit, window),
                "login": RateLimitItemPerSecond(settings.login_rate_limit, window),
                "oauth": RateLimitItemPerSecond(settings.oauth_rate_limit, window),
            },
            storage_uri=settings.rate_limit_storage_uri,
        )

    def allow(self, bucket: str, identifier: str) -> bool:
        """Record a hit and return True, or return False without recording."""
        return self._limiter.hit(self._items[bucket], bucket, identifier)

    def retry_after(self, bucket: str, identifier: str) -> int:
        """Seconds until the oldest admitted request leaves the window (0 if not limited)."""
        stats = self._limiter.get_window_stats(self._items[bucket], bucket, identifier)
        if stats.remaining > 0:
            return 0
        return max(1, math.ceil(stats.reset_time - time.time()))


def rate_limit(bucket: str) -> Callable[[Request], None]:
    """Build a FastAPI dependency that throttles a route with the named bucket.

    Use as:
        @router.post("/auth/login", dependencies=[Depends(rate_limit("login"))])
    """

    def _check(request: Request) -> None:
        limits: RateLimits = request.app.state.rate_limits
        identifier = get_remote_address(request)
        if not limits.allow(bucket, identifier):
            raise RateLimitExceededError(
                "Too many requests from this IP, please try again later.",
                retry_after=limits.retry_after(bucket, identifier),
            )

    return _check

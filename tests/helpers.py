"""
tests/helpers.py -- Test doubles and small builders shared across test modules.

Kept out of conftest.py so test modules can import them by name; conftest
holds only fixtures.
"""

from __future__ import annotations

from datetime import datetime, timezone

from auth.credentials import hash_password
from auth.errors import AuthenticationError
from auth.models import OAuthProfile, User
from auth.store import UserStore

TEST_SECRET = "test-secret-key-which-is-long-enough-0123456789"


class FakeClock:
    """Monotonic-style clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateTimeClock:
    """datetime clock for TokenService."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class FakeGoogleVerifier:
    """Stand-in for GoogleTokenVerifier: known tokens map to profiles."""

    def __init__(self) -> None:
        self.profiles: dict[str, OAuthProfile] = {}

    def add(self, token: str, profile: OAuthProfile) -> str:
        self.profiles[token] = profile
        return token

    async def verify(self, id_token: str) -> OAuthProfile:
        try:
            return self.profiles[id_token]
        except KeyError:
            raise AuthenticationError("Invalid Google token", code="invalid_token") from None


def make_user(store: UserStore, **overrides) -> User:
    """Insert a password user directly through the store and return it."""
    fields = {
        "username": "existing",
        "email": "existing@example.com",
        "first_name": "Ex",
        "last_name": "Isting",
        "hashed_password": hash_password("password123", rounds=4),
    }
    fields.update(overrides)
    user_id = store.create_user(User(**fields))
    return store.get_by_id(user_id)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}

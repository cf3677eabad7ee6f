"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services
do the work; api/models.py owns the outward shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A local identity, reachable by password, Google sign-in, or both.

    hashed_password is None for accounts created through Google sign-in.
    oauth_subject is the Google `sub` claim; it stays None until the account
    signs in with Google for the first time, at which point the resolver
    links it. At least one of the two is always set.

    email is always stored lowercased so uniqueness is case-insensitive.
    """

    username: str
    email: str
    first_name: str = ""
    last_name: str = ""
    id: int | None = None
    hashed_password: str | None = None  # None = OAuth-only account
    oauth_subject: str | None = None
    avatar: str | None = None
    role: str = "user"  # "user" or "admin"
    is_active: bool = True
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class OAuthProfile:
    """Verified claims extracted from a Google ID token."""

    subject: str
    email: str
    given_name: str = ""
    family_name: str = ""
    picture: str | None = None

"""
auth/credentials.py -- Password hashing and the credential lifecycle.

CredentialStore owns everything that touches a password: registration,
credential verification, password changes and the profile fields that sit
next to them. Hashing is an explicit step inside register() and
change_password() -- there is no save hook -- so a profile edit or a
last-login stamp can never re-hash an already hashed value.

Security design decisions:
  bcrypt (direct usage, no passlib wrapper) with a cost factor of 12 by
  default. bcrypt is CPU-bound (~250ms at cost 12), so hash and check run
  off the event loop through anyio.to_thread.run_sync().

  bcrypt rejects inputs over 72 bytes, so that is the enforced maximum.

  Timing equalization: when the email is unknown or the account has no
  password, checkpw still runs against _DUMMY_HASH so response time does not
  reveal whether an account exists.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import bcrypt
from anyio import to_thread

from auth.errors import AuthenticationError, ConflictError, ValidationError
from auth.models import User
from auth.store import UserStore

logger = logging.getLogger("taskforge.auth")

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
NAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_BYTES = 72  # bcrypt limit
EMAIL_PATTERN = r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$"

PROFILE_FIELDS = ("first_name", "last_name", "username")

_EMAIL_RE = re.compile(EMAIL_PATTERN)

_INVALID_CREDENTIALS = "Invalid login credentials"


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash, or an over-long candidate, is a mismatch rather
    than an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at import so the first unknown-email login is not measurably
# slower than the rest. Cost 12 to match real hashes.
_DUMMY_HASH: str = hash_password("taskforge_timing_dummy")


# ---------------------------------------------------------------------------
# Input rules
# ---------------------------------------------------------------------------


def validate_username(username: str) -> str:
    username = (username or "").strip()
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters"
        )
    return username


def validate_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email")
    return email


def validate_password(password: str) -> str:
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(f"Password cannot exceed {PASSWORD_MAX_BYTES} bytes")
    return password


def validate_name(value: str, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{label} is required")
    if len(value) > NAME_MAX_LENGTH:
        raise ValidationError(f"{label} cannot exceed {NAME_MAX_LENGTH} characters")
    return value


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class CredentialStore:
    """Registration, login verification and password management over a UserStore."""

    def __init__(self, users: UserStore, bcrypt_rounds: int = 12) -> None:
        self.users = users
        self.bcrypt_rounds = bcrypt_rounds

    async def _hash(self, plain: str) -> str:
        return await to_thread.run_sync(hash_password, plain, self.bcrypt_rounds)

    async def _check(self, plain: str, hashed: str) -> bool:
        return await to_thread.run_sync(verify_password, plain, hashed)

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> User:
        """Create a password account. Raises ConflictError if email or username is taken."""
        username = validate_username(username)
        email = validate_email(email)
        validate_password(password)
        first_name = validate_name(first_name, "First name")
        last_name = validate_name(last_name, "Last name")

        if self.users.find_by_email_or_username(email, username) is not None:
            raise ConflictError("A user with this email or username already exists")

        user = User(
            username=username,
            email=email,
            hashed_password=await self._hash(password),
            first_name=first_name,
            last_name=last_name,
        )
        # A concurrent registration can still win the race between the check
        # above and this insert; the UNIQUE constraint turns that into ConflictError.
        user_id = self.users.create_user(user)
        logger.info("Registered user id=%s username=%s", user_id, username)
        return self.users.get_by_id(user_id)

    async def verify_credentials(self, email: str, password: str) -> User:
        """Return the active user owning email/password, or raise AuthenticationError.

        Unknown email, inactive account and wrong password all produce the
        same message. An account without a password gets a distinct code so
        the client can point the user at Google sign-in.
        """
        user = self.users.get_by_email((email or "").strip())
        if user is None or not user.is_active:
            await self._check(password, _DUMMY_HASH)
            raise AuthenticationError(_INVALID_CREDENTIALS, code="invalid_credentials")
        if user.hashed_password is None:
            await self._check(password, _DUMMY_HASH)
            raise AuthenticationError(
                "This account uses Google sign-in. Please log in with Google.",
                code="oauth_account",
            )
        if not await self._check(password, user.hashed_password):
            raise AuthenticationError(_INVALID_CREDENTIALS, code="invalid_credentials")
        return user

    def update_last_login(self, user: User) -> User:
        user.last_login = self.users.update_last_login(user.id)
        return user

    def find_by_id(self, user_id: int) -> User | None:
        return self.users.get_by_id(user_id)

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        """Replace the password hash after checking the current password.

        Raises ValidationError for Google-only accounts (nothing to change)
        and AuthenticationError when current_password is wrong.
        """
        if user.hashed_password is None:
            raise ValidationError("Password change not available for this account")
        if not await self._check(current_password or "", user.hashed_password):
            raise AuthenticationError("Current password is incorrect", code="invalid_password")
        validate_password(new_password)
        hashed = await self._hash(new_password)
        self.users.update_user(user.id, hashed_password=hashed)
        user.hashed_password = hashed
        logger.info("Password changed for user id=%s", user.id)

    def update_profile(self, user: User, updates: dict[str, Any]) -> User:
        """Apply an allow-listed profile update.

        Any key outside PROFILE_FIELDS rejects the whole update -- nothing is
        silently dropped.
        """
        if not updates:
            raise ValidationError("No fields to update")
        unknown = sorted(set(updates) - set(PROFILE_FIELDS))
        if unknown:
            raise ValidationError(
                "Only first_name, last_name, and username can be updated",
                detail=f"Rejected fields: {', '.join(unknown)}",
            )

        fields: dict[str, str] = {}
        for key, value in updates.items():
            if not isinstance(value, str):
                raise ValidationError(f"{key} must be a string")
            if key == "username":
                fields[key] = validate_username(value)
            else:
                fields[key] = validate_name(value, key.replace("_", " ").capitalize())

        if "username" in fields and fields["username"] != user.username:
            if self.users.username_exists(fields["username"]):
                raise ConflictError("A user with this username already exists", field="username")

        self.users.update_user(user.id, **fields)
        return self.users.get_by_id(user.id)

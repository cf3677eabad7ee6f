"""
auth/oauth.py -- Google sign-in: ID token verification and identity resolution.

The client (web or mobile) completes Google's sign-in itself and posts the
resulting ID token to POST /api/v1/auth/google. This module turns that token
into a local User.

GoogleTokenVerifier:
  Verifies the ID token with Authlib's JOSE implementation against Google's
  published JWKS (RS256 only), checking iss, aud == GOOGLE_CLIENT_ID, exp and
  sub. The key set is fetched with requests in a worker thread and cached
  for GOOGLE_JWKS_CACHE_SECONDS. A token signed with a key id missing from
  the cache triggers one early refresh, so Google key rotation is picked up
  without waiting for the cache to expire.

  Email verification is mandatory: a token whose email_verified claim is
  not true is rejected before any lookup or linking happens.

OAuthResolver:
  Lookup order is subject first, then email. A subject match is the stronger
  binding and wins. An email match without a subject is linked. No match
  creates a new password-less account with a de-duplicated username.

  find-or-create is not transactional. Two concurrent first sign-ins for the
  same Google account both reach the insert; the loser hits the UNIQUE
  constraint on oauth_subject, loops, and finds the winner's record.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Protocol

import requests
from anyio import to_thread
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from auth.credentials import USERNAME_MAX_LENGTH, USERNAME_MIN_LENGTH
from auth.errors import AuthenticationError, ConflictError, DependencyError
from auth.models import OAuthProfile, User
from auth.store import UserStore
from core.config import Settings

logger = logging.getLogger("taskforge.auth.oauth")

GOOGLE_ISSUERS = ["accounts.google.com", "https://accounts.google.com"]

# Room kept at the end of a derived username for the numeric suffix.
_SUFFIX_DIGITS = 4
_MAX_USERNAME_SUFFIX = 10**_SUFFIX_DIGITS - 1
_CREATE_ATTEMPTS = 3

_INVALID_TOKEN = "Invalid Google token"


class IdentityVerifier(Protocol):
    """Turn a provider token into verified profile claims."""

    async def verify(self, id_token: str) -> OAuthProfile: ...


# ---------------------------------------------------------------------------
# Google ID token verification
# ---------------------------------------------------------------------------


class GoogleTokenVerifier:
    """Verify Google ID tokens for a single OAuth client id (the audience).

    Keys are looked up by the token's `kid`. An unknown kid forces one JWKS
    refresh (Google rotates its keys), at most once per min_refresh_seconds.
    """

    def __init__(
        self,
        client_id: str,
        jwks_url: str = "https://www.googleapis.com/oauth2/v3/certs",
        cache_seconds: int = 3600,
        session: requests.Session | None = None,
        min_refresh_seconds: int = 60,
    ) -> None:
        self.client_id = client_id
        self.jwks_url = jwks_url
        self.cache_seconds = cache_seconds
        self.min_refresh_seconds = min_refresh_seconds
        self._jwt = JsonWebToken(["RS256"])
        self._session = session or requests.Session()
        self._session.max_redirects = 3
        self._lock = threading.Lock()
        self._keys = None
        self._fetched_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> GoogleTokenVerifier:
        return cls(
            client_id=settings.google_client_id,
            jwks_url=settings.google_jwks_url,
            cache_seconds=settings.google_jwks_cache_seconds,
        )

    def _load_keys(self, refresh: bool = False):
        with self._lock:
            if self._keys is not None:
                age = time.monotonic() - self._fetched_at
                if age < (self.min_refresh_seconds if refresh else self.cache_seconds):
                    return self._keys
            try:
                resp = self._session.get(self.jwks_url, timeout=10)
                resp.raise_for_status()
                self._keys = JsonWebKey.import_key_set(resp.json())
            except (requests.RequestException, ValueError) as exc:
                logger.warning("Google JWKS fetch failed: %s", exc)
                raise DependencyError("Google sign-in is temporarily unavailable.") from exc
            self._fetched_at = time.monotonic()
            logger.info("Google JWKS refreshed")
            return self._keys

    def _key_for(self, header, payload):
        kid = header.get("kid")
        try:
            return self._load_keys().find_by_kid(kid)
        except ValueError:
            logger.info("Unknown Google key id %r, refreshing JWKS", kid)
            return self._load_keys(refresh=True).find_by_kid(kid)

    def _decode(self, id_token: str):
        claims = self._jwt.decode(
            id_token,
            self._key_for,
            claims_options={
                "iss": {"essential": True, "values": GOOGLE_ISSUERS},
                "aud": {"essential": True, "value": self.client_id},
                "sub": {"essential": True},
                "exp": {"essential": True},
            },
        )
        claims.validate(leeway=30)
        return claims

    async def verify(self, id_token: str) -> OAuthProfile:
        if not self.client_id:
            raise DependencyError("Google sign-in is not configured.")
        # Key lookup may hit the network, so decoding runs in a worker thread.
        try:
            claims = await to_thread.run_sync(self._decode, id_token)
        except (JoseError, ValueError, TypeError) as exc:
            logger.info("Rejected Google ID token: %s", exc)
            raise AuthenticationError(_INVALID_TOKEN, code="invalid_token") from exc
        return profile_from_claims(dict(claims))


def profile_from_claims(claims: dict) -> OAuthProfile:
    """Build an OAuthProfile from verified ID token claims.

    Raises AuthenticationError when sub or email is missing or the email is
    not verified.
    """
    subject = claims.get("sub")
    email = claims.get("email")
    if not subject or not email or not isinstance(email, str):
        raise AuthenticationError(_INVALID_TOKEN, code="invalid_token")
    if claims.get("email_verified") not in (True, "true"):
        raise AuthenticationError("Google account email is not verified", code="invalid_token")
    return OAuthProfile(
        subject=str(subject),
        email=email.lower(),
        given_name=claims.get("given_name") or "",
        family_name=claims.get("family_name") or "",
        picture=claims.get("picture"),
    )


# ---------------------------------------------------------------------------
# Identity resolution
# ---------------------------------------------------------------------------


def base_username(email: str) -> str:
    """Derive a username stem from the local part of an email address."""
    stem = email.split("@", 1)[0].strip()
    stem = stem[: USERNAME_MAX_LENGTH - _SUFFIX_DIGITS]
    if len(stem) < USERNAME_MIN_LENGTH:
        stem = f"{stem}_user"
    return stem


class OAuthResolver:
    """Map a verified Google identity onto a local User (find, link, or create)."""

    def __init__(self, users: UserStore, verifier: IdentityVerifier) -> None:
        self.users = users
        self.verifier = verifier

    async def resolve(self, id_token: str) -> User:
        profile = await self.verifier.verify(id_token)
        for _ in range(_CREATE_ATTEMPTS):
            user = self._find(profile)
            if user is not None:
                return self._link(user, profile)
            try:
                return self._create(profile)
            except ConflictError as exc:
                # Lost a race with a concurrent sign-in or registration; look again.
                logger.info("OAuth account creation collided on %s, retrying", exc.field or "unknown field")
        raise DependencyError("Could not create an account for this Google identity.")

    def _find(self, profile: OAuthProfile) -> User | None:
        user = self.users.get_by_oauth_subject(profile.subject)
        if user is None:
            user = self.users.get_by_email(profile.email)
        return user

    def _link(self, user: User, profile: OAuthProfile) -> User:
        if not user.is_active:
            raise AuthenticationError("Account deactivated", code="account_deactivated")
        if user.oauth_subject is not None and user.oauth_subject != profile.subject:
            raise AuthenticationError(
                "This email is already linked to a different Google account",
                code="oauth_conflict",
            )

        if user.oauth_subject is None:
            self.users.link_oauth(user.id, profile.subject)
            user.oauth_subject = profile.subject
            logger.info("Linked Google identity to user id=%s", user.id)
        if profile.picture and profile.picture != user.avatar:
            self.users.update_user(user.id, avatar=profile.picture)
            user.avatar = profile.picture
        return user

    def _create(self, profile: OAuthProfile) -> User:
        user = User(
            username=self._free_username(base_username(profile.email)),
            email=profile.email,
            first_name=profile.given_name[:50],
            last_name=profile.family_name[:50],
            oauth_subject=profile.subject,
            avatar=profile.picture,
        )
        user_id = self.users.create_user(user)
        logger.info("Created user id=%s from Google sign-in (username=%s)", user_id, user.username)
        return self.users.get_by_id(user_id)

    def _free_username(self, stem: str) -> str:
        """Return stem, or stem1, stem2, ... -- the first one not taken."""
        for counter in range(_MAX_USERNAME_SUFFIX + 1):
            candidate = f"{stem}{counter}" if counter else stem
            if not self.users.username_exists(candidate):
                return candidate
        raise DependencyError("Could not allocate a unique username.")

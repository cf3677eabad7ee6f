"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Bearer-token pipeline, one step per failure mode:
  1. No "Authorization: Bearer <token>" header  -> "Authentication required"
  2. Token expired / invalid                     -> TokenExpiredError / InvalidTokenError
  3. Token subject not in the store              -> "User not found"
  4. User deactivated                            -> "Account deactivated"
  5. Success -> User stored on request.state.user and returned.

try_get_current_user() is the soft variant (returns None on any failure).
get_current_user() raises AuthenticationError (401).
require_admin() and require_ownership() layer 403 checks on top.

The components (token service, credential store) are read from app.state,
where the lifespan put them.

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable

from fastapi import Depends, Request

from auth.errors import AuthenticationError, AuthorizationError
from auth.models import User

logger = logging.getLogger("taskforge.auth")

_BEARER_PREFIX = "Bearer "


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith(_BEARER_PREFIX):
        raise AuthenticationError("Authentication required")
    token = auth_header[len(_BEARER_PREFIX) :].strip()
    if not token:
        raise AuthenticationError("Authentication required")
    return token


def _authenticate(request: Request) -> User:
    """Run the full pipeline; raise an AuthenticationError subclass on failure."""
    token = _bearer_token(request)
    subject = request.app.state.tokens.verify(token)
    try:
        user_id = int(subject)
    except ValueError:
        user = None
    else:
        user = request.app.state.credentials.find_by_id(user_id)
    if user is None:
        # Token outlived its user.
        raise AuthenticationError("User not found", code="user_not_found")
    if not user.is_active:
        raise AuthenticationError("Account deactivated", code="account_deactivated")
    request.state.user = user
    return user


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None. Never raises for auth failures.

    For endpoints that serve both anonymous and signed-in callers.
    """
    try:
        return _authenticate(request)
    except AuthenticationError:
        request.state.user = None
        return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises AuthenticationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    try:
        return _authenticate(request)
    except AuthenticationError as exc:
        logger.info("Authentication failed on %s: %s", request.url.path, exc.code)
        raise


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require role == "admin". 401 if unauthenticated, 403 otherwise."""
    if user.role != "admin":
        raise AuthorizationError("Admin privileges required")
    return user


async def _body_field(request: Request, field: str) -> str | None:
    if "application/json" not in request.headers.get("content-type", ""):
        return None
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(body, dict) and body.get(field) not in (None, ""):
        return str(body[field])
    return None


def require_ownership(field: str = "created_by") -> Callable[..., Awaitable[User]]:
    """Build a dependency allowing only the resource owner (or an admin).

    The owning user id is read from the JSON body, then the path parameters,
    then the query string -- the first non-empty value wins -- and compared
    to the caller's id as strings.

    Use as:
        @router.get("/users/{user_id}")
        async def route(user: User = Depends(require_ownership("user_id"))): ...
    """

    async def _guard(request: Request, user: User = Depends(get_current_user)) -> User:
        if user.role == "admin":
            return user
        owner = await _body_field(request, field)
        if owner is None:
            owner = request.path_params.get(field) or request.query_params.get(field) or None
        if owner is not None and str(owner) == str(user.id):
            return user
        raise AuthorizationError("You can only access your own resources")

    return _guard

"""
api/routes/v1/auth.py -- Authentication and account REST endpoints.

Routes:
  POST /api/v1/auth/register           -- create password account; 201 + token
  POST /api/v1/auth/login              -- email/password login; token
  POST /api/v1/auth/google             -- Google ID token sign-in; token
  GET  /api/v1/auth/profile            -- current user (requires auth)
  PUT  /api/v1/auth/profile            -- update first_name/last_name/username (requires auth)
  PUT  /api/v1/auth/change-password    -- change password (requires auth)
  POST /api/v1/auth/logout             -- acknowledge logout (requires auth)
  GET  /api/v1/auth/users              -- list all users (admin only)
  GET  /api/v1/auth/users/{user_id}    -- one user (owner or admin)

Security:
  Every route here counts against the "general" rate-limit bucket; register,
  login and google additionally count against their own stricter bucket.
  Login failures share one message whether the email is unknown or the
  password is wrong. Cache-Control: no-store on every response carrying a token.
  Tokens are stateless: logout is a client-side discard, the server keeps no
  revocation list.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response

from api.limiter import rate_limit
from api.models import (
    AuthResponse,
    GoogleAuthRequest,
    LoginRequest,
    MessageResponse,
    PasswordChangeRequest,
    RegisterRequest,
    UserResponse,
)
from auth.credentials import CredentialStore
from auth.dependencies import get_current_user, require_admin, require_ownership
from auth.errors import NotFoundError
from auth.models import User
from auth.oauth import OAuthResolver
from auth.tokens import TokenService

# Auth policy:
# - POST /api/v1/auth/register, /login, /google: public, rate limited
# - GET/PUT /api/v1/auth/profile, PUT /change-password, POST /logout: get_current_user
# - GET /api/v1/auth/users: require_admin
# - GET /api/v1/auth/users/{user_id}: require_ownership("user_id")
router = APIRouter(dependencies=[Depends(rate_limit("general"))])


def _auth_response(request: Request, response: Response, user: User) -> AuthResponse:
    tokens: TokenService = request.app.state.tokens
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(
        user=UserResponse.from_user(user),
        token=tokens.issue(user.id),
        expires_in=tokens.expire_seconds,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/auth/register",
    response_model=AuthResponse,
    status_code=201,
    dependencies=[Depends(rate_limit("register"))],
)
async def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create a password account and sign it in."""
    credentials: CredentialStore = request.app.state.credentials
    user = await credentials.register(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    credentials.update_last_login(user)
    return _auth_response(request, response, user)


@router.post("/auth/login", response_model=AuthResponse, dependencies=[Depends(rate_limit("login"))])
async def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with email and password.

    verify_credentials() includes timing equalization -- do not inline a
    lookup + bcrypt check here.
    """
    credentials: CredentialStore = request.app.state.credentials
    user = await credentials.verify_credentials(body.email, body.password)
    credentials.update_last_login(user)
    return _auth_response(request, response, user)


@router.post("/auth/google", response_model=AuthResponse, dependencies=[Depends(rate_limit("oauth"))])
async def google_auth(request: Request, response: Response, body: GoogleAuthRequest) -> AuthResponse:
    """Sign in with a Google ID token; links or creates the local account."""
    resolver: OAuthResolver = request.app.state.oauth
    credentials: CredentialStore = request.app.state.credentials
    user = await resolver.resolve(body.token)
    credentials.update_last_login(user)
    return _auth_response(request, response, user)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/profile", response_model=UserResponse)
async def get_profile(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the profile of the authenticated user."""
    return UserResponse.from_user(current_user)


@router.put("/auth/profile", response_model=UserResponse)
async def update_profile(
    request: Request,
    updates: dict[str, Any] = Body(...),
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Update first_name, last_name and/or username.

    Any other key rejects the whole request with 400 -- nothing is
    silently ignored.
    """
    credentials: CredentialStore = request.app.state.credentials
    updated = credentials.update_profile(current_user, updates)
    return UserResponse.from_user(updated)


@router.put("/auth/change-password", response_model=MessageResponse)
async def change_password(
    request: Request,
    body: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Replace the password. Not available for Google-only accounts."""
    credentials: CredentialStore = request.app.state.credentials
    await credentials.change_password(current_user, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully")


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(current_user: User = Depends(get_current_user)) -> MessageResponse:
    """Acknowledge logout. The client discards its token."""
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# User administration
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
async def list_users(request: Request, current_user: User = Depends(require_admin)) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    credentials: CredentialStore = request.app.state.credentials
    return [UserResponse.from_user(u) for u in credentials.users.list_users()]


@router.get("/auth/users/{user_id}", response_model=UserResponse)
async def get_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_ownership("user_id")),
) -> UserResponse:
    """Return one account. Users may read their own; admins may read any."""
    credentials: CredentialStore = request.app.state.credentials
    user = credentials.find_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return UserResponse.from_user(user)

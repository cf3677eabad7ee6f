"""
api/main.py -- FastAPI application entry point for Taskforge.

Run with:  python main.py serve
           uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one access-log line per request

Rate limiting is not middleware: it is a per-route dependency (api.limiter)
so each sensitive endpoint can use its own bucket.

Lifespan is the composition root. It loads Settings (which fails fast on a
missing JWT_SECRET), builds every auth component once, and hangs them on
app.state for the dependencies and route handlers to use.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import RateLimits
from api.models import ErrorDetail, ErrorResponse, HealthResponse, WelcomeResponse
from api.routes.v1.auth import router as auth_router
from auth.credentials import CredentialStore
from auth.dependencies import try_get_current_user
from auth.errors import DependencyError, RateLimitExceededError, ServiceError
from auth.models import User
from auth.oauth import GoogleTokenVerifier, OAuthResolver
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("taskforge.api")

# ---------------------------------------------------------------------------
# Lifespan -- composition root
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth components on startup and release them on shutdown.

    Startup order matters: the store must exist before the credential store
    and the OAuth resolver, which both wrap it.
    """
    settings = get_settings()
    logger.info("Taskforge API starting up")
    user_store = UserStore(settings.database_url)
    app.state.user_store = user_store
    app.state.tokens = TokenService.from_settings(settings)
    app.state.credentials = CredentialStore(user_store, bcrypt_rounds=settings.bcrypt_rounds)
    app.state.oauth = OAuthResolver(user_store, GoogleTokenVerifier.from_settings(settings))
    app.state.rate_limits = RateLimits.from_settings(settings)
    logger.info(
        "Auth initialized (users=%d, google_sign_in=%s)",
        user_store.count_users(),
        "enabled" if settings.google_client_id else "disabled",
    )

    yield

    user_store.close()
    logger.info("Taskforge API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Taskforge API",
    description="Task & project management API -- authentication and account service.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------


def _install_middleware(app: FastAPI) -> None:
    # Middleware needs its configuration at import time, before lifespan runs.
    settings = get_settings()
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )


_install_middleware(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Map the auth error taxonomy onto HTTP.

    429 carries Retry-After; 401 carries WWW-Authenticate as RFC 6750 expects
    for bearer-protected resources.
    """
    if isinstance(exc, DependencyError):
        logger.warning("Dependency failure on %s %s: %s", request.method, request.url.path, exc.message)
    response = _error(exc.status_code, exc.code, exc.message, exc.detail)
    if isinstance(exc, RateLimitExceededError):
        response.headers["Retry-After"] = str(exc.retry_after)
    elif exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    if request.url.path.startswith("/api/v1/auth/"):
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured envelope for routing-level errors (404 unknown route, 405, ...)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health and welcome
#
# Defined directly in main.py (not in a router) so they stay reachable and
# unthrottled -- load balancer health checks must not be rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database status."""
    try:
        request.app.state.user_store.count_users()
        database = "ok"
    except DependencyError:
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )


@app.get("/", tags=["Health"])
async def welcome(user: User | None = Depends(try_get_current_user)) -> WelcomeResponse:
    """Entry point listing the API sections; names the caller when a valid token is sent."""
    return WelcomeResponse(
        message="Welcome to Taskforge API",
        version=__version__,
        documentation="/docs",
        endpoints={
            "authentication": "/api/v1/auth",
            "health": "/api/v1/health",
        },
        authenticated_as=user.username if user else None,
    )

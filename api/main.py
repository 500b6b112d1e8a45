"""
api/main.py -- FastAPI application entry point for Authgate.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every long-lived collaborator exactly once (credential store,
fast cache, token manager, session cache, guard, auth service), hangs them on
app.state, and closes them symmetrically on shutdown. Nothing below keeps
module-level client handles.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.users import router as users_router
from auth.errors import AuthenticationError, ServiceError
from auth.guard import AccessGuard, clear_session_cookie
from auth.mail import Mailer
from auth.models import utcnow
from auth.passwords import PasswordPolicy
from auth.service import AuthService
from auth.session_cache import SessionCache
from auth.store import CredentialStore
from auth.tokens import TokenManager
from cache.store import create_cache
from core.config import Settings, get_settings

_VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_services(
    app: FastAPI,
    settings: Settings,
    store: CredentialStore,
    cache,
    *,
    clock: Callable[[], datetime] = utcnow,
    mailer: Mailer | None = None,
) -> None:
    """Compose the auth components on top of a store and cache and attach them to app.state.

    Shared by the production lifespan and the test lifespan so both build the
    same object graph. Tests pass a fake clock and a mock mailer.
    """
    tokens = TokenManager(
        store,
        session_ttl=settings.session_ttl_seconds,
        confirmation_ttl=settings.confirmation_ttl_seconds,
        clock=clock,
    )
    sessions = SessionCache(cache, tokens, store, session_ttl=settings.session_ttl_seconds)
    mailer = mailer or Mailer(
        smtp_host=settings.smtp_host or None,
        smtp_port=settings.smtp_port,
        smtp_user=settings.smtp_user or None,
        smtp_password=settings.smtp_password or None,
        smtp_use_tls=settings.smtp_use_tls,
        from_email=settings.mail_from or None,
        front_app_url=settings.front_app_url,
    )
    app.state.store = store
    app.state.cache = cache
    app.state.tokens = tokens
    app.state.sessions = sessions
    app.state.guard = AccessGuard(sessions, tokens)
    app.state.auth_service = AuthService(
        store,
        tokens,
        sessions,
        PasswordPolicy(settings.password_min_length, settings.password_require_special),
        mailer,
        hash_rounds=settings.password_hash_rounds,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order: store first (schema creation), cache second, then the
    components that depend on both. Shutdown closes cache before store.
    """
    logger.info("Authgate API starting up")
    store = CredentialStore(_settings.database_url)
    logger.info("Credential store initialized")
    cache = create_cache(_settings)
    if not cache.ping():
        logger.warning("Fast cache unreachable -- sessions will be served from the store")
    wire_services(app, _settings, store, cache)
    logger.info("Auth services initialized (session_ttl=%ds)", _settings.session_ttl_seconds)

    yield

    app.state.cache.close()
    app.state.store.close()
    logger.info("Authgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Authgate API",
    description="Registration, email confirmation and cookie sessions.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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

app.include_router(auth_router, tags=["Auth"])
app.include_router(users_router, tags=["Users"])


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
    """Map domain errors to their status code and stable error code.

    Guard rejections for unknown or expired sessions also expire the stale
    cookie so the browser stops presenting it.
    """
    if exc.status_code >= 500:
        logger.error("Service error on %s %s: %s", request.method, request.url.path, exc.message)
        response = _error(exc.status_code, exc.error_code, "An unexpected error occurred.")
    else:
        response = _error(exc.status_code, exc.error_code, exc.message, exc.detail)
    if isinstance(exc, AuthenticationError) and exc.clears_session_cookie:
        clear_session_cookie(response, secure=_settings.secure_cookies)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the request body, path or query fails validation."""
    return _error(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 route, 405 method)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged with its traceback, never written to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it sits outside the access
# guard and is never rate limited.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus the reachability of the store and the cache."""
    try:
        database = "ok" if request.app.state.store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check: credential store unreachable")
        database = "error"
    cache = "ok" if request.app.state.cache.ping() else "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=_VERSION, components={"app": "ok", "database": database, "cache": cache})

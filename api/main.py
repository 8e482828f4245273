"""
api/main.py -- FastAPI application entry point for Keyward.

Keyward is an authentication and account-management service: registration,
login with lockout, access/refresh tokens, self-service profile and session
management, administrative user management and an audit trail.

Install:   pip install -e .
Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request, rejections included
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. SlowAPIMiddleware     -- enforces the default per-IP rate limit

Lifespan handles startup (store, services, purge task) and shutdown
(cancel purge task, close DB connection) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

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
from api.models import error_response
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.admin import UserAdministration
from auth.audit import AuditRecorder
from auth.errors import AuthError
from auth.lockout import LockoutGuard
from auth.passwords import PasswordHasher
from auth.service import AccountService
from auth.store import AuthStore
from auth.tokens import TokenAuthority
from core.clock import Clock, utc_now
from core.config import Settings, get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("keyward.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def wire_components(app: FastAPI, settings: Settings, store: AuthStore, clock: Clock = utc_now) -> None:
    """Build every auth component around `store` and attach it to app.state.

    Route handlers and dependencies only ever reach components through
    app.state, so tests can call this with an isolated store and a frozen
    clock instead of the production ones.
    """
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    tokens = TokenAuthority(settings, store, clock=clock)
    lockout = LockoutGuard(
        store,
        max_attempts=settings.max_login_attempts,
        lock_duration=timedelta(seconds=settings.lock_duration_seconds),
        clock=clock,
    )
    audit = AuditRecorder(store)

    app.state.store = store
    app.state.clock = clock
    app.state.hasher = hasher
    app.state.tokens = tokens
    app.state.lockout = lockout
    app.state.audit = audit
    app.state.accounts = AccountService(store, hasher, tokens, lockout, audit, clock=clock)
    app.state.admin = UserAdministration(store, hasher, audit, clock=clock)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired refresh sessions every `interval` seconds.

    Runs as a background asyncio task started in lifespan startup. Expired
    sessions are already rejected at refresh time; this only keeps the
    sessions table from growing without bound. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep and unwinds
    the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            purged = app.state.store.purge_expired_sessions(app.state.clock())
        except SQLAlchemyError:
            logger.exception("Session purge failed")
            continue
        if purged:
            logger.info("Purged %d expired sessions", purged)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the store first, then the components that
    wrap it, then the purge task that references app.state.store.
    """
    logger.info("Keyward API starting up")
    store = AuthStore(settings.database_url)
    wire_components(app, settings, store)
    logger.info(
        "Auth initialized (rotate_refresh_tokens=%s, rate_limit_enabled=%s)",
        settings.rotate_refresh_tokens,
        settings.rate_limit_enabled,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.store.close()
    logger.info("Keyward API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Keyward API",
    description="Authentication, session and account management.",
    version="1.0.0",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the last one registered is
# the outermost. Registered innermost-first: SlowAPI -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same envelope so API clients can parse errors
# uniformly: {"success": false, "code": ..., "message": ..., "errors"?: [...]}
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Translate every auth-core failure into its status code and stable code."""
    if exc.status_code >= 500:
        logger.error("Auth failure %s on %s %s", exc.code, request.method, request.url.path)
    return error_response(exc.status_code, exc.code, exc.message, exc.errors)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    client = request.client.host if request.client else "unknown"
    logger.warning("Rate limit exceeded on %s from %s", request.url.path, client)
    response = error_response(429, "rate_limited", "Too many requests, please try again later.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one {field, message} entry per failed constraint."""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or None, "message": err.get("msg", "Invalid value.")})
    return error_response(400, "validation_error", "Validation failed.", errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Envelope for routing errors (404, 405) and any explicit HTTPException."""
    code = {404: "not_found", 405: "method_not_allowed"}.get(exc.status_code, f"http_{exc.status_code}")
    response = error_response(exc.status_code, code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Store failures surface as a generic 500 and never leak SQL to the client."""
    logger.exception("Store failure on %s %s", request.method, request.url.path)
    errors = [{"message": str(exc)}] if settings.debug else None
    return error_response(500, "store_failure", "Internal server error.", errors)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only. The detail is echoed back to
    the client in DEBUG mode alone.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    errors = [{"message": str(exc)}] if settings.debug else None
    return error_response(500, "internal_error", "Internal server error.", errors)

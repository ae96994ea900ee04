"""
api/main.py -- FastAPI application entry point for the DevHub API.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan handles startup (stores, auth services, session sweep task) and
shutdown (cancel sweep task, dispose engine) symmetrically. Startup is
fail-fast: if the persistence backend cannot be initialised the exception
propagates and the server process exits instead of serving half-initialised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import HealthResponse
from api.responses import error_response, success_response
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.credentials import CredentialStore
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.concurrency import run_blocking
from core.config import Settings, get_settings
from core.errors import DevHubError, InternalError

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("devhub.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def attach_services(app: FastAPI, user_store: UserStore, session_store: SessionStore, settings: Settings) -> None:
    """Build the auth components around the given stores and hang them on app.state.

    Each component receives its collaborators explicitly, so tests can wire
    an app to isolated stores the same way the lifespan wires real ones.
    """
    timeout = settings.operation_timeout_seconds
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.session_store = session_store
    app.state.credentials = CredentialStore(user_store, session_store, timeout=timeout)
    app.state.token_issuer = TokenIssuer(
        session_store,
        user_store,
        secret_key=settings.secret_key,
        access_expire_seconds=settings.access_token_expire_seconds,
        refresh_expire_seconds=settings.refresh_token_expire_seconds,
        timeout=timeout,
    )


# ---------------------------------------------------------------------------
# Background session sweep
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Delete expired refresh tokens every `interval` seconds.

    Cleanup only: rotation rejects expired tokens on its own. A failed sweep
    is logged and retried next round. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await run_blocking(
                app.state.session_store.purge_expired,
                timeout=app.state.settings.operation_timeout_seconds,
            )
        except InternalError as exc:
            logger.warning("Session sweep failed: %s", exc.message)
            continue
        if removed:
            logger.info("Session sweep removed %d expired refresh token(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Stores first -- everything else depends on them. Failure here is
         fatal: logged at CRITICAL and re-raised so the process exits.
      2. Auth services -- wrap the stores.
      3. Sweep task last -- references app.state.session_store.
    """
    settings = get_settings()
    logger.info("DevHub API starting up")
    try:
        user_store = UserStore(settings.database_url)
        session_store = SessionStore(user_store.engine, secret_key=settings.secret_key)
        user_store.ping()
    except SQLAlchemyError:
        logger.critical("Persistence backend unavailable at startup -- refusing to serve", exc_info=True)
        raise
    attach_services(app, user_store, session_store, settings)
    logger.info("Auth initialized")
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.session_sweep_interval_seconds))

    yield

    app.state.sweep_task.cancel()
    app.state.user_store.close()
    logger.info("DevHub API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="DevHub API",
    description="Internal developer portal API -- accounts, sessions and access control.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])

# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same envelope so API clients can parse errors
# uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(DevHubError)
async def devhub_error_handler(request: Request, exc: DevHubError) -> JSONResponse:
    """Render any core error with its own status and code.

    Retryable internal errors (timeouts) carry Retry-After so clients back off
    instead of treating the failure as a credential problem.
    """
    headers = None
    if isinstance(exc, InternalError):
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
        if exc.retryable:
            headers = {"Retry-After": "1"}
    return error_response(exc.message, exc.status_code, exc.to_data(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with per-field messages when a body or query fails validation."""
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ())[1:]) or "body",
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return error_response("Validation error", 400, {"code": "validation_error", "errors": errors})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = int(getattr(exc, "retry_after", 60))
    return error_response(
        "Too many requests.",
        429,
        {"code": "rate_limited", "detail": str(exc.detail)},
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes, wrong methods and any framework-raised HTTP error."""
    return error_response(str(exc.detail), exc.status_code, {"code": f"http_{exc.status_code}"})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error_response("An unexpected error occurred.", 500, {"code": "internal_error", "retryable": False})


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit and no auth -- load balancers poll it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> JSONResponse:
    """Return liveness, version and database reachability."""
    database = "ok"
    try:
        await run_blocking(request.app.state.user_store.ping, timeout=request.app.state.settings.operation_timeout_seconds)
    except InternalError:
        database = "error"
    body = HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
    return success_response(body, "Service is running")

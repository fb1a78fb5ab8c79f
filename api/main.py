"""
api/main.py -- FastAPI application entry point for PimpMyPack.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the stores and services on app.state and starts the
background sweep; shutdown cancels the sweep and disposes of the engine.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.accounts import router as accounts_router
from api.routes.v1.auth import router as auth_router
from auth.context import QueryContext
from auth.dependencies import RoleCache
from auth.errors import MSG_BAD_REQUEST, MSG_INTERNAL_SERVER, AuthError, RateLimited, StoreError
from auth.mail import MailSender
from auth.rate_limiter import IPRateLimiter
from auth.refresh_tokens import RefreshTokenStore
from auth.sessions import SessionService
from auth.store import AccountStore
from auth.sweeper import sweep_loop
from auth.tokens import AccessTokenCodec
from core.config import Settings, get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("pimpmypack.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Application state
# ---------------------------------------------------------------------------


def init_state(app: FastAPI, settings: Settings, account_store: AccountStore) -> None:
    """Wire every service the routes look up on app.state.

    Shared by the production lifespan and the test lifespan so both see the
    same object graph; only the database behind account_store differs.
    """
    app.state.settings = settings
    app.state.account_store = account_store
    app.state.refresh_tokens = RefreshTokenStore(
        account_store.engine,
        default_days=settings.refresh_token_days,
        extended_days=settings.refresh_token_remember_me_days,
    )
    app.state.codec = AccessTokenCodec(settings.secret_key, lifetime_minutes=settings.access_token_minutes)
    app.state.sessions = SessionService(
        account_store, app.state.refresh_tokens, app.state.codec, bcrypt_rounds=settings.bcrypt_rounds
    )
    app.state.refresh_limiter = IPRateLimiter(
        settings.refresh_rate_limit_requests,
        window_seconds=settings.refresh_rate_limit_window_seconds,
        burst=settings.refresh_rate_limit_burst,
    )
    app.state.role_cache = RoleCache(settings.role_cache_ttl_seconds)
    app.state.mailer = MailSender(
        host=settings.mail_server,
        port=settings.mail_port,
        username=settings.mail_username,
        password=settings.mail_password,
        identity=settings.mail_identity,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build stores on startup, tear them down on shutdown.

    The sweep task references app.state.refresh_tokens and
    app.state.refresh_limiter, so it starts after init_state().
    """
    logger.info("PimpMyPack API starting up (stage=%s)", settings.stage)
    init_state(app, settings, AccountStore(settings.database_url))
    app.state.sweep_task = asyncio.create_task(
        sweep_loop(
            app.state.refresh_tokens,
            app.state.refresh_limiter,
            interval_seconds=settings.cleanup_interval_hours * 3600,
            idle_windows=settings.rate_limit_idle_windows,
        )
    )
    logger.info(
        "Auth initialized (access=%dm, refresh=%dd/%dd, refresh limit=%d per %gs)",
        settings.access_token_minutes,
        settings.refresh_token_days,
        settings.refresh_token_remember_me_days,
        settings.refresh_rate_limit_requests,
        settings.refresh_rate_limit_window_seconds,
    )

    yield

    app.state.sweep_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.sweep_task
    app.state.account_store.close()
    logger.info("PimpMyPack API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="PimpMyPack API",
    description="Accounts and session management for PimpMyPack.",
    version=API_VERSION,
    lifespan=lifespan,
    # Interactive docs only in development.
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

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

app.include_router(auth_router, prefix="/api", tags=["Sessions"])
app.include_router(accounts_router, prefix="/api", tags=["Accounts"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is the flat envelope {"error": message}, plus retry_after
# on 429. Internal details stay in the server log.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, body: ErrorResponse, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True), headers=headers)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth exception taxonomy onto HTTP responses."""
    headers = {"Cache-Control": "no-store"}
    body = ErrorResponse(error=exc.message)
    if isinstance(exc, StoreError):
        logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    elif isinstance(exc, RateLimited):
        body.retry_after = exc.retry_after
        headers["Retry-After"] = str(exc.retry_after)
    return _error_response(exc.status_code, body, headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 for the slowapi login limit, same body shape as the refresh limiter."""
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error_response(
        429,
        ErrorResponse(error="Rate limit exceeded", retry_after=retry_after),
        {"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed body or query parameters. Field details are logged, not returned."""
    logger.info("Rejected malformed request on %s %s: %s", request.method, request.url.path, exc.errors())
    return _error_response(400, ErrorResponse(error=MSG_BAD_REQUEST))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, ErrorResponse(error=str(exc.detail)), getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, ErrorResponse(error=MSG_INTERNAL_SERVER))


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit: load balancers and monitoring must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database round-trip check."""
    components = {"app": "ok", "database": "ok"}
    try:
        request.app.state.account_store.ping(QueryContext(timeout=2.0))
    except StoreError as exc:
        logger.warning("Health check database ping failed: %s", exc)
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)

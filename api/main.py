"""
api/main.py -- FastAPI application factory for tokengate.

Run with:  uvicorn asgi:app --reload

create_app() builds everything the auth pipeline needs up front -- the
AuthConfig, the stores and the token capabilities -- because middleware is
fixed when the app is constructed. Tests call create_app() with in-memory
stores; asgi.py calls it with the defaults from Settings.

Middleware stack (outermost to innermost):
  1. log_requests      -- method, path, status and latency for every request
  2. LoginoutCheck     -- answers login POSTs and logouts
  3. Authenticate      -- sets request.state.current_user
  4. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan starts the revoked-token purge task on startup and cancels it and
closes both stores on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes import router
from auth.pipeline import check_store_fields, install_auth_pipeline
from auth.store import RevokedTokenStore, UserStore
from auth.tokens import JwtCapabilities
from core.config import AuthConfig, Settings, get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tokengate.api")

Mailer = Callable[[str, str, str], None]

_PURGE_INTERVAL_SECONDS = 6 * 60 * 60


def log_mailer(to: str, kind: str, query: str) -> None:
    """Default mailer: records that a link was issued. The key is not logged."""
    logger.info("Issued %s link for %s (no mailer configured)", kind, to)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop revoked-token rows whose token has expired, every 6 hours.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        await asyncio.to_thread(app.state.revoked_store.purge_expired)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("tokengate API starting up (storage=%s)", app.state.auth_config.storage.value)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    app.state.revoked_store.close()
    logger.info("tokengate API shutdown complete")


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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
# Exception handlers
#
# Every error leaves the API as {"error": {"code", "message", ...}}. Routes
# raise HTTPException with a {"code", "message"} dict as detail when they
# want a specific code; anything else is wrapped here.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None, headers=None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True), headers=headers)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "unknown")
    retry_after = str(int(getattr(exc, "retry_after", 60)))
    return _error(429, "rate_limited", "Too many requests.", str(exc), headers={"Retry-After": retry_after})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Pass structured details through as the error field; wrap plain strings."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort for unexpected errors. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    config: AuthConfig | None = None,
    user_store: UserStore | None = None,
    revoked_store: RevokedTokenStore | None = None,
    mailer: Mailer | None = None,
) -> FastAPI:
    """Assemble the tokengate app.

    Args:
        settings:      Defaults to get_settings().
        config:        Defaults to AuthConfig.from_settings(settings).
        user_store:    Defaults to a UserStore on settings.database_url.
        revoked_store: Defaults to a RevokedTokenStore on the same database.
        mailer:        Called as mailer(to, kind, query_string) whenever a
                       confirmation or reset link is issued.
    """
    settings = settings or get_settings()
    config = config or AuthConfig.from_settings(settings)
    check_store_fields(config)
    user_store = user_store or UserStore(settings.database_url)
    revoked_store = revoked_store or RevokedTokenStore(settings.database_url)
    capabilities = JwtCapabilities(config, revoked_store)

    app = FastAPI(
        title="tokengate",
        description="Token authentication pipeline: login, logout, verification and signup helpers.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.auth_config = config
    app.state.user_store = user_store
    app.state.revoked_store = revoked_store
    app.state.capabilities = capabilities
    app.state.mailer = mailer or log_mailer
    # SlowAPI looks for app.state.limiter by convention.
    app.state.limiter = limiter

    app.add_middleware(SlowAPIMiddleware)
    install_auth_pipeline(app, config, user_store, capabilities)
    app.middleware("http")(log_requests)

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(router)

    @app.get("/api/v1/health", tags=["Health"])
    async def health() -> HealthResponse:
        """Return API liveness and current version. Not rate limited."""
        return HealthResponse(version=__version__)

    return app

"""
api/main.py -- FastAPI application entry point for idgate.

Exposes the identity flows in auth.service over HTTP. The transport shell is
thin: routing, request validation, rate limiting and mapping of
core.errors exceptions to status codes. All identity semantics live in auth/.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. CORSMiddleware  -- adds CORS headers for allowed browser origins
  2. log_requests    -- one access-log line per request

Rate limiting is not middleware: api.limiter.enforce_rate_limit is a router
dependency on /auth, so /health is never throttled.

Lifespan builds the store, token service and AuthService once and closes the
store's connection pool on shutdown.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import RateLimited, TokenBucketLimiter
from api.models import HealthResponse, MessageResponse
from api.routes.auth import router as auth_router
from auth.service import AuthService
from auth.store import IdentityStore
from auth.tokens import TokenService
from core.config import get_settings
from core.errors import IdGateError

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("idgate.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_auth_service(store: IdentityStore) -> AuthService:
    """Wire an AuthService from Settings. The signing key is read exactly once here."""
    settings = get_settings()
    tokens = TokenService(settings.secret_key, validity=timedelta(days=settings.token_validity_days))
    return AuthService(
        store,
        tokens,
        otp_length=settings.otp_length,
        otp_fixed_code=settings.otp_fixed_code,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("idgate API starting up")
    app.state.store = IdentityStore(settings.database_url, pool_size=settings.db_pool_size)
    app.state.auth_service = build_auth_service(app.state.store)
    app.state.limiter = TokenBucketLimiter(rate=settings.rate_limit_per_second, burst=settings.rate_limit_burst)
    logger.info(
        "Auth initialized (token validity %d days, rate limit %.1f/s burst %d)",
        settings.token_validity_days,
        settings.rate_limit_per_second,
        settings.rate_limit_burst,
    )

    yield

    app.state.store.close()
    logger.info("idgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="idgate API",
    description="Session tokens, one-time passcodes and SSO account reconciliation.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor. Every request passes through this coroutine before
# reaching any route handler; latency is reported on every response. Bodies
# and headers are never logged -- they carry tokens and passcodes.
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


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is {"message": ...} so clients parse failures uniformly.
# ---------------------------------------------------------------------------


def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=MessageResponse(message=message).model_dump())


@app.exception_handler(IdGateError)
async def idgate_error_handler(request: Request, exc: IdGateError) -> JSONResponse:
    """Map the core error taxonomy onto its HTTP status."""
    return _message(exc.status_code, exc.message)


@app.exception_handler(RateLimited)
async def rate_limit_handler(request: Request, exc: RateLimited) -> JSONResponse:
    """Return 429; Retry-After is rounded up to whole seconds."""
    response = _message(429, "Too many requests.")
    response.headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the request body, path or query fails validation."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = f"{location}: {first.get('msg', 'invalid')}" if location else "Request validation failed."
    return _message(422, detail)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _message(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only; the client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _message(500, "Internal Server Error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly on the app (not on the auth router) so it is never rate
# limited -- load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a database round-trip check."""
    db_ok = request.app.state.store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )

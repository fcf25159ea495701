"""
api/main.py -- FastAPI application entry point for AccessLedger.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. SessionMiddleware     -- signed session cookie (identity, CSRF token, OAuth state)
  2. SlowAPIMiddleware     -- enforces per-route rate limits from core.limiter
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan is the composition root: it builds the stores, the Authlib registry,
the strategies, the history recorder and the AuthOrchestrator from Settings
and hangs them on app.state. Shutdown drains pending history writes before
closing the stores.

Error channel: every exception the auth flows raise ends up in one of the
handlers at the bottom of this module. They answer with the ErrorResponse
JSON envelope. asgi.py layers HTML error pages over them for browser routes.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.models import ErrorDetail, ErrorResponse, FieldError, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.history import router as history_router
from auth.errors import AuthFlowError, ValidationError
from auth.oauth import build_oauth_registry, get_enabled_providers
from auth.orchestrator import AuthConfig, AuthOrchestrator
from auth.passwords import CredentialService
from auth.sessions import SessionAuthenticator
from auth.store import UserStore
from auth.strategies import LocalStrategy, OAuthStrategy
from core.config import Settings, get_settings
from core.limiter import limiter
from history.recorder import HistoryRecorder
from history.store import HistoryStore

VERSION = "0.3.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("accessledger.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def build_orchestrator(
    settings: Settings,
    user_store: UserStore,
    history_store: HistoryStore,
    oauth_registry,
) -> AuthOrchestrator:
    """Wire the auth flow from explicit collaborators.

    One OAuthStrategy is registered per provider with credentials configured;
    "local" is always present.
    """
    credentials = CredentialService(user_store)
    strategies = {"local": LocalStrategy(credentials)}
    for provider in get_enabled_providers(settings):
        strategies[provider["name"]] = OAuthStrategy(provider["name"], oauth_registry, credentials)
    return AuthOrchestrator(
        config=AuthConfig.from_settings(settings),
        credentials=credentials,
        authenticator=SessionAuthenticator(strategies),
        history=HistoryRecorder(history_store, wait=settings.history_wait),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("AccessLedger API starting up")
    app.state.user_store = UserStore(settings.auth_db_url)
    app.state.history_store = HistoryStore(settings.history_db_url)
    app.state.oauth = build_oauth_registry(settings)
    app.state.orchestrator = build_orchestrator(
        settings, app.state.user_store, app.state.history_store, app.state.oauth
    )
    logger.info(
        "Auth initialized (strategies=%s, history_wait=%s)",
        ", ".join(app.state.orchestrator.authenticator.names),
        settings.history_wait,
    )

    yield

    await app.state.orchestrator.history.drain()
    app.state.user_store.close()
    app.state.history_store.close()
    logger.info("AccessLedger API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AccessLedger API",
    description="Account signup, login, logout and OAuth sign-in with an audit trail.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the LAST registration is the
# outermost layer. SessionMiddleware goes last: everything below it, route
# handlers included, can read request.session.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    allow_credentials=True,
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# The session carries the authenticated identity, the CSRF token and the
# OAuth state value authlib checks on the callback.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie="accessledger_session",
    max_age=_settings.session_max_age_seconds,
    same_site="lax",
    https_only=_settings.secure_cookies,
)

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
app.include_router(history_router, prefix="/api/v1", tags=["History"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when query params fail FastAPI's own validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(ValidationError)
async def form_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Return 422 with one FieldError per violated signup/login field."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                detail=[FieldError(field=v.field, message=v.message) for v in exc.violations],
            )
        ).model_dump(),
    )


@app.exception_handler(AuthFlowError)
async def auth_flow_error_handler(request: Request, exc: AuthFlowError) -> JSONResponse:
    """Return 500 for provider and internal failures.

    The reason and the chained cause go to the log; the client only sees the
    error's public message.
    """
    logger.error(
        "%s on %s %s: %s",
        exc.code,
        request.method,
        request.url.path,
        getattr(exc, "reason", None) or repr(getattr(exc, "cause", exc)),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.public_message)).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers must not be
# throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database probe."""
    database = "ok"
    try:
        request.app.state.user_store.count_users()
        request.app.state.history_store.count()
    except Exception:
        logger.warning("Health check database probe failed", exc_info=True)
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})

"""
api/main.py -- FastAPI application entry point for AdvisorGate.

Exposes the authentication pipeline over HTTP and puts the session guard in
front of every page route.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware  -- rejects requests with unexpected Host headers
  2. CORSMiddleware         -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware      -- enforces per-route rate limits from api.limiter
  4. SessionGuardMiddleware -- redirect / pass-through decision for page routes
  5. log_requests           -- one access log line per request

Lifespan builds the user store and the authentication orchestrator on startup
and closes the store on shutdown.
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

from api.limiter import client_ip, limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.backdoor import BackdoorAuthority
from auth.guards import CredentialVerifier
from auth.orchestrator import AuthenticationOrchestrator
from auth.store import StoreUnavailableError, UserStore
from auth.totp import TOTPValidator
from core.config import get_settings
from web.session_guard import GuardConfig, SessionGuardMiddleware

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("advisorgate.api")

_settings = get_settings()
if _settings.debug:
    logging.getLogger("advisorgate").setLevel(logging.DEBUG)

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_authenticator(store: UserStore, settings) -> AuthenticationOrchestrator:
    """Wire the orchestrator and its collaborators from settings."""
    return AuthenticationOrchestrator(
        store,
        CredentialVerifier(),
        TOTPValidator(store),
        backdoor=BackdoorAuthority.from_settings(settings),
        skip_ip_checks_default=settings.disable_ip_checks,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    The store must exist before the orchestrator, which holds a reference to
    it for IP stamping and OTP secret lookups.
    """
    logger.info("AdvisorGate API starting up")
    app.state.user_store = UserStore()
    app.state.authenticator = build_authenticator(app.state.user_store, _settings)
    logger.info(
        "Auth initialized (backdoor=%s, ip_checks=%s)",
        app.state.authenticator.backdoor is not None,
        "off" if _settings.disable_ip_checks else "on",
    )

    yield

    app.state.user_store.close()
    logger.info("AdvisorGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AdvisorGate API",
    description="Credential, location, and second-factor checks for AdvisorGate sign-in.",
    version=_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if _settings.debug else None,
    openapi_url="/api/openapi.json",
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette builds the stack in reverse registration order: the LAST
# add_middleware() call is the outermost layer. Register innermost first.
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
        client_ip(request),
    )
    return response


app.add_middleware(SessionGuardMiddleware, config=GuardConfig.from_settings(_settings))

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
# Page routes are mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


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
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
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


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail. When detail is
    already a structured dict, use it directly as the error field rather than
    stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
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


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    """An outage anywhere outside the login route (e.g. session lookup) is a 503, not a 500."""
    logger.error("Auth store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error=ErrorDetail(
                code="service_unavailable",
                message="Authentication is temporarily unavailable.",
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
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
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and auth store reachability."""
    components = {"app": "ok"}
    try:
        request.app.state.user_store.has_users()
        components["database"] = "ok"
    except StoreUnavailableError:
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=_VERSION, components=components)

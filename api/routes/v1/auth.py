"""
api/routes/v1/auth.py -- Login, step-up, and session endpoints.

Routes:
  POST /api/v1/auth/login    -- full credential pipeline; sets session cookie
  POST /api/v1/auth/reauth   -- step-up confirmation (PIN or password) for the session user
  POST /api/v1/auth/logout   -- clears the session cookie
  GET  /api/v1/auth/session  -- current session user (requires auth)

Security:
  [H2] POST /login is rate-limited per source IP (slowapi) and per
       (account, source IP) (LoginThrottle). The second counter is hit
       before any check runs, so every reject cause costs the same.
  [U1] Every rejection -- unknown account, unverified location, served-country
       gate, wrong password/PIN, missing/wrong OTP, unresolvable backdoor
       target -- returns the identical 401 body from _rejected().
  [M5] Cache-Control: no-store on login responses.
  StoreUnavailableError is NOT a rejection: it returns 503 so operators can
  tell an outage from bad credentials.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_throttle, request_context
from api.models import (
    LoginRequest,
    LoginResponse,
    ReauthRequest,
    ReauthResponse,
    SessionUserResponse,
)
from auth.dependencies import get_current_user
from auth.models import AuthOptions, Credentials, User
from auth.orchestrator import AuthenticationOrchestrator
from auth.store import StoreUnavailableError
from auth.tokens import clear_session_cookie, create_session_token, set_session_cookie
from core.config import get_settings
from core.network import country_is_served

logger = logging.getLogger("advisorgate.api")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:   public -- clearing a cookie needs no prior auth
# - POST /api/v1/auth/reauth:   requires auth (get_current_user)
# - GET  /api/v1/auth/session:  requires auth (get_current_user)
router = APIRouter()


def _rejected() -> JSONResponse:
    """The one and only failed-authentication response [U1]."""
    resp = JSONResponse(
        status_code=401,
        content={"error": {"code": "bad_credentials", "message": "Invalid credentials."}},
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _unavailable() -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={"code": "service_unavailable", "message": "Authentication is temporarily unavailable."},
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with password (+ OTP when enrolled); set the session cookie."""
    authenticator: AuthenticationOrchestrator = request.app.state.authenticator
    context = request_context(request)

    if not login_throttle.hit(body.email, context.ip):  # [H2]
        raise HTTPException(
            status_code=429,
            detail={"code": "rate_limited", "message": "Too many login attempts."},
        )

    if not country_is_served(context.country, _settings.serve_countries, _settings.deny_countries):
        logger.info("authentication rejected for %s from %s", body.email, context.ip)
        return _rejected()

    user_ref = body.email
    options = AuthOptions(is_login_event=True, debug=_settings.debug)
    backdoor = authenticator.backdoor.parse_login_identifier(body.email) if authenticator.backdoor else None
    if backdoor is not None:
        user_ref = backdoor.target_email
        options.backdoor_user = backdoor.operator_email

    try:
        user = authenticator.authenticate(context, user_ref, body.to_credentials(user_ref), options)
    except StoreUnavailableError as exc:
        logger.error("Login for %s failed: auth store unavailable", user_ref)
        raise _unavailable() from exc

    if user is None:
        return _rejected()

    token, expires_at = create_session_token(user.id, user.email)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_at=expires_at.isoformat(),
            email=user.email,
            display_name=user.display_name,
            office=user.office,
        ).model_dump(),
    )
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the session cookie."""
    resp = JSONResponse(content={"message": "Logged out."})
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/reauth", response_model=ReauthResponse)
def reauth(
    request: Request,
    body: ReauthRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Re-confirm the session user before a sensitive action.

    PIN is accepted here (allow_pin) and OTP is not asked again (skip_2fa):
    the session already passed the second factor at login. IP allow-listing
    still runs with the deployment default.
    """
    authenticator: AuthenticationOrchestrator = request.app.state.authenticator
    context = request_context(request)

    if not login_throttle.hit(current_user.email, context.ip):
        raise HTTPException(
            status_code=429,
            detail={"code": "rate_limited", "message": "Too many login attempts."},
        )

    credentials = Credentials(email=current_user.email, password=body.password or None, pin=body.pin or None)
    options = AuthOptions(allow_pin=True, skip_2fa=True, debug=_settings.debug)
    try:
        user = authenticator.authenticate(context, current_user, credentials, options)
    except StoreUnavailableError as exc:
        raise _unavailable() from exc

    if user is None:
        return _rejected()
    return JSONResponse(content=ReauthResponse(confirmed=True).model_dump())


@router.get("/auth/session", response_model=SessionUserResponse)
async def session(current_user: User = Depends(get_current_user)) -> SessionUserResponse:
    """Return identity information for the current session."""
    return SessionUserResponse(
        user_id=current_user.id,
        email=current_user.email,
        display_name=current_user.display_name,
        office=current_user.office,
        two_fa_enabled=current_user.two_fa_enabled,
        last_login=current_user.last_login,
    )

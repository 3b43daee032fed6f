"""
web/session_guard.py -- Per-request session guard for page routes.

Every page request is classified by path prefix and routed by one pure
function, evaluate(), which returns either Redirect(location) or
Continue(headers). The Starlette middleware around it only decodes the
session cookie, gathers request metadata, and applies the decision.

Route tables (prefix match, first table wins):
  SIGN_IN_PAGES   /signin, /try      -- valid session -> bounce to landing
  UNAUTHED_PAGES  /signout, /auth    -- always reachable
  everything else                    -- SENSITIVE, needs a valid session

Transition rules, in order:
  1. Guard disabled (SKIP_MIDDLEWARE) or excluded prefix (/api, /static)
     -> Continue, no headers.
  2. "/" -> landing route, whatever the session state.
  3. Sign-in page + valid session -> landing route.
  4. Sensitive route + no valid session -> /signin?callbackUrl=<path>.
  5. Otherwise Continue with x-current-path, plus x-req-country on the
     sign-in family. Missing country falls back to DEFAULT_COUNTRY.

Server-rendered pages cannot see the originally requested path once routing
has happened, hence x-current-path on every pass-through.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union
from urllib.parse import urlencode

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from auth.models import RouteClass, Session
from auth.tokens import decode_session_token
from core.network import request_country

logger = logging.getLogger("advisorgate.web")

SIGN_IN_PAGES: tuple[str, ...] = ("/signin", "/try")
UNAUTHED_PAGES: tuple[str, ...] = ("/signout", "/auth")
# Pages that render a country-dependent form (sign-in family plus office setup).
COUNTRY_PAGES: tuple[str, ...] = SIGN_IN_PAGES + ("/setup/set-office-info",)

CURRENT_PATH_HEADER = "x-current-path"
COUNTRY_HEADER = "x-req-country"


@dataclass(frozen=True)
class GuardConfig:
    landing_path: str = "/entries"
    signin_path: str = "/signin"
    default_country: str = "CA"
    cookie_name: str = "session_token"
    skip: bool = False
    debug: bool = False
    excluded_prefixes: tuple[str, ...] = ("/api", "/static", "/favicon.ico")

    @classmethod
    def from_settings(cls, settings) -> "GuardConfig":
        return cls(
            landing_path=settings.landing_path,
            signin_path=settings.signin_path,
            default_country=settings.default_country,
            cookie_name=settings.session_cookie_name,
            skip=settings.skip_middleware,
            debug=settings.debug,
        )


@dataclass(frozen=True)
class Redirect:
    location: str


@dataclass(frozen=True)
class Continue:
    headers: dict[str, str] = field(default_factory=dict)


GuardDecision = Union[Redirect, Continue]


def classify_route(path: str) -> RouteClass:
    if any(path.startswith(p) for p in SIGN_IN_PAGES):
        return RouteClass.SIGN_IN_PAGE
    if any(path.startswith(p) for p in UNAUTHED_PAGES):
        return RouteClass.PUBLICLY_ALLOWED
    return RouteClass.SENSITIVE


def session_is_valid(session: Optional[Session], now: Optional[datetime] = None) -> bool:
    if session is None or session.expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return session.expires_at > now


def evaluate(
    path: str,
    query: str,
    session: Optional[Session],
    country: str,
    config: GuardConfig,
    now: Optional[datetime] = None,
) -> GuardDecision:
    """Decide what happens to one page request. Pure; never raises."""
    if config.skip or any(path.startswith(p) for p in config.excluded_prefixes):
        return Continue()

    if path == "/":
        return Redirect(f"{config.landing_path}?{query}" if query else config.landing_path)

    has_session = session_is_valid(session, now)
    route = classify_route(path)

    if route is RouteClass.SIGN_IN_PAGE and has_session:
        return Redirect(config.landing_path)

    if route is RouteClass.SENSITIVE and not has_session:
        if path and path != "/":
            return Redirect(f"{config.signin_path}?{urlencode({'callbackUrl': path}, safe='/')}")
        return Redirect(config.signin_path)

    headers = {CURRENT_PATH_HEADER: path}
    if any(path.startswith(p) for p in COUNTRY_PAGES):
        if not country:
            if not config.debug:
                logger.warning("No country resolvable for %s -- defaulting to %s", path, config.default_country)
            country = config.default_country
        headers[COUNTRY_HEADER] = country
    return Continue(headers)


class SessionGuardMiddleware(BaseHTTPMiddleware):
    """Starlette wrapper around evaluate().

    Register with app.add_middleware(SessionGuardMiddleware, config=GuardConfig(...)).
    """

    def __init__(self, app, config: GuardConfig) -> None:
        super().__init__(app)
        self.config = config

    async def dispatch(self, request: Request, call_next):
        session = decode_session_token(request.cookies.get(self.config.cookie_name))
        decision = evaluate(
            request.url.path,
            request.url.query,
            session,
            request_country(request.headers),
            self.config,
        )
        if isinstance(decision, Redirect):
            return RedirectResponse(decision.location, status_code=302)
        if decision.headers:
            _inject_headers(request, decision.headers)
        return await call_next(request)


def _inject_headers(request: Request, headers: dict[str, str]) -> None:
    """Replace or add request headers in the ASGI scope for downstream handlers."""
    names = {k.lower().encode("latin-1") for k in headers}
    raw = [(k, v) for k, v in request.scope["headers"] if k.lower() not in names]
    raw.extend((k.lower().encode("latin-1"), v.encode("utf-8")) for k, v in headers.items())
    request.scope["headers"] = raw
    # Drop Starlette's cached Headers view so it is rebuilt from the scope.
    request.__dict__.pop("_headers", None)

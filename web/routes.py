"""
web/routes.py -- Page shells for the AdvisorGate sign-in flow.

Every route here sits downstream of SessionGuardMiddleware, which has already
decided redirect vs. pass-through. The shells return JSON so a front end can
render them; they read the x-current-path / x-req-country headers the guard
injected rather than re-deriving request metadata.

Routes:
  GET /signin                  -- sign-in page (country + callbackUrl)
  GET /try                     -- trial sign-in page (same shape as /signin)
  GET /signout                 -- clear cookie, redirect /signin
  GET /entries                 -- authenticated landing page
  GET /setup/set-office-info   -- office setup form (needs country)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse

from auth.dependencies import try_get_current_user
from auth.tokens import clear_session_cookie
from core.config import get_settings
from web.session_guard import COUNTRY_HEADER, CURRENT_PATH_HEADER

logger = logging.getLogger("advisorgate.web")

router = APIRouter()


def _safe_callback(callback_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs and protocol-relative "//host" paths so a crafted
    callbackUrl cannot bounce the user off-site after sign-in.
    """
    if callback_url and callback_url.startswith("/") and not callback_url.startswith("//"):
        return callback_url
    return get_settings().landing_path


def _sign_in_shell(request: Request, page: str) -> JSONResponse:
    resp = JSONResponse(
        content={
            "page": page,
            "country": request.headers.get(COUNTRY_HEADER),
            "current_path": request.headers.get(CURRENT_PATH_HEADER),
            "callback_url": _safe_callback(request.query_params.get("callbackUrl")),
        }
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/signin")
def signin_page(request: Request) -> JSONResponse:
    return _sign_in_shell(request, "signin")


@router.get("/try")
def try_page(request: Request) -> JSONResponse:
    return _sign_in_shell(request, "try")


@router.get("/signout")
def signout(request: Request) -> RedirectResponse:
    """Clear the session cookie and send the browser back to sign-in."""
    resp = RedirectResponse(get_settings().signin_path, status_code=302)
    clear_session_cookie(resp)
    return resp


@router.get("/entries")
def entries(request: Request):
    """Landing page. The guard only checked the token; the account may be gone."""
    user = try_get_current_user(request)
    if user is None:
        logger.info("Session for a missing or inactive account -- signing out")
        return signout(request)
    return JSONResponse(
        content={
            "page": "entries",
            "current_path": request.headers.get(CURRENT_PATH_HEADER),
            "user": {
                "email": user.email,
                "display_name": user.display_name,
                "office": user.office,
            },
        }
    )


@router.get("/setup/set-office-info")
def set_office_info(request: Request):
    user = try_get_current_user(request)
    if user is None:
        return signout(request)
    return JSONResponse(
        content={
            "page": "set-office-info",
            "country": request.headers.get(COUNTRY_HEADER),
            "current_path": request.headers.get(CURRENT_PATH_HEADER),
            "office": user.office,
        }
    )

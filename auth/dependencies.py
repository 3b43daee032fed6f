"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two session carriers are checked in priority order:
  1. Session cookie -- set by the login flow.
  2. Authorization: Bearer <token> header -- API clients reusing the JWT.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system. No imports from api/ or web/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import decode_session_token
from core.config import get_settings


def _session_token(request: Request) -> str | None:
    token = request.cookies.get(get_settings().session_cookie_name)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def try_get_current_user(request: Request) -> User | None:
    """Return the session's User, or None. Never raises for auth reasons."""
    session = decode_session_token(_session_token(request))
    if session is None or session.user_id is None:
        return None
    user = request.app.state.user_store.get_by_id(session.user_id)
    if user and user.is_active:
        return user
    return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user

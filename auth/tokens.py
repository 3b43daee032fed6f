"""
auth/tokens.py -- Session token issue/decode and cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email, and expiry. Decoding returns None on any failure --
       the session guard treats that as "no session", route dependencies turn
       it into a 401.

  The session record exposed to the rest of the app is auth.models.Session:
       {token, expires_at}. The guard re-checks expires_at against its own
       clock, so validity does not rest on the JWT library alone.

  SECRET_KEY: sourced once from core.config.get_settings() at module load.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import Session
from core.config import get_settings

logger = logging.getLogger("advisorgate.auth")

_settings = get_settings()

_ALGORITHM = "HS256"


def create_session_token(user_id: int, email: str, expire_seconds: int = 0) -> tuple[str, datetime]:
    """Encode a signed session JWT. Returns (token, expires_at)."""
    duration = expire_seconds if expire_seconds > 0 else _settings.session_expire_seconds
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": email,
        "user_id": user_id,
        "exp": expires_at,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM), expires_at


def decode_session_token(token: str | None) -> Session | None:
    """Verify a session JWT. Returns a Session, or None on any failure."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "exp" not in payload:
        return None
    try:
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None
    return Session(token=token, expires_at=expires_at, user_id=payload["user_id"], email=payload.get("sub"))


def set_session_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session JWT as an httpOnly, SameSite=Lax cookie.

    max_age matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.session_expire_seconds
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(_settings.session_cookie_name)

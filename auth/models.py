"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
orchestrator do the work; these only own the shape.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


@dataclass
class VerifiedIP:
    """An (ip, country) pair an account has logged in from.

    Rows are created out-of-band by the verification flow (or the admin CLI).
    Only entries with verified=True satisfy the allow-list check. At most one
    row exists per (user_id, ip, country) -- enforced by a UNIQUE constraint.
    """

    ip: str
    country: str
    verified: bool = False
    last_login: str | None = None  # ISO 8601, stamped on each matching login
    lat_long: str | None = None  # "lat,long" from edge geo headers
    id: int | None = None
    user_id: int | None = None


@dataclass
class User:
    """An account that can authenticate.

    hashed_password / hashed_pin are bcrypt hashes (the credential handles).
    The TOTP secret lives in its own table keyed by email and is never loaded
    onto this record.
    """

    email: str
    display_name: str = ""
    office: str = ""  # office / tenant the account belongs to
    id: int | None = None
    hashed_password: str | None = None
    hashed_pin: str | None = None
    two_fa_enabled: bool = False
    is_active: bool = True
    verified_ips: list[VerifiedIP] = field(default_factory=list)
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class Credentials:
    """One authentication attempt's submitted factors. Never persisted."""

    email: str
    password: str | None = field(default=None, repr=False)
    pin: str | None = field(default=None, repr=False)
    two_fa_token: str | None = field(default=None, repr=False)


@dataclass
class AuthOptions:
    """Recognized per-call flags for AuthenticationOrchestrator.authenticate().

    skip_ip_checks=None means "use the deployment default" (DISABLE_IP_CHECKS).
    backdoor_user is the operator email when an operator is acting on behalf
    of another account.
    """

    skip_ip_checks: bool | None = None
    skip_2fa: bool = False
    allow_pin: bool = False
    backdoor_user: str | None = None
    is_login_event: bool = False
    debug: bool = False


@dataclass(frozen=True)
class Session:
    """A decoded session cookie. Valid only while expires_at is in the future."""

    token: str
    expires_at: datetime | None
    user_id: int | None = None
    email: str | None = None


class RouteClass(str, Enum):
    SIGN_IN_PAGE = "sign_in_page"
    PUBLICLY_ALLOWED = "publicly_allowed"
    SENSITIVE = "sensitive"

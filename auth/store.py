"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_verified_ip are the
mappers. The orchestrator and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  record_ip_login() is a single keyed UPDATE on (user_id, ip, country,
  verified). Two concurrent logins from the same account each issue their
  own statement; neither reads-modifies-writes a shared list, so no update is
  lost. add_verified_ip() is an INSERT .. ON CONFLICT DO UPDATE on the same
  key for the same reason.

Outages:
  Driver-level OperationalError (database unreachable, locked, missing file)
  is raised as StoreUnavailableError so callers can tell a dependency outage
  apart from "no such user".

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from auth.models import User, VerifiedIP
from core.config import get_settings
from core.network import normalize_ip


class StoreUnavailableError(RuntimeError):
    """The backing database could not be reached. Not an authentication failure."""


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("display_name", String(255), nullable=False, server_default=""),
    Column("office", String(255), nullable=False, server_default=""),
    Column("hashed_password", Text),  # NULL = no password login
    Column("hashed_pin", Text),  # NULL = no PIN configured
    Column("two_fa_enabled", Boolean, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_verified_ips = Table(
    "verified_ips",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("ip", String(64), nullable=False),
    Column("country", String(8), nullable=False),
    Column("verified", Boolean, nullable=False, server_default="0"),
    Column("last_login", String(32)),
    Column("lat_long", String(64)),
    UniqueConstraint("user_id", "ip", "country", name="uq_verified_ips_user_ip_country"),
)

_otp_secrets = Table(
    "otp_secrets",
    _metadata,
    Column("email", String(320), primary_key=True),
    Column("secret", String(128), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys for each new SQLite connection.

    PRAGMAs are per-connection, so this runs on every pool checkout source.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, VerifiedIP, and OTP secret records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(User(email="a@b.com", hashed_password=hash_secret("pw")))
        store.add_verified_ip(uid, "203.0.113.7", "CA", verified=True)
        user = store.get_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            with self.engine.connect() as conn:
                yield conn
        except OperationalError as exc:
            raise StoreUnavailableError("auth database unavailable") from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self._connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self._connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    display_name=user.display_name,
                    office=user.office,
                    hashed_password=user.hashed_password,
                    hashed_pin=user.hashed_pin,
                    two_fa_enabled=user.two_fa_enabled,
                    is_active=user.is_active,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user (with verified IPs loaded) by email. Case-insensitive."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._load_ips(conn, row.id))

    def get_by_id(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._load_ips(conn, row.id))

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self._connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def set_two_fa_enabled(self, user_id: int, enabled: bool) -> bool:
        with self._connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(two_fa_enabled=enabled))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Verified IPs
    # ------------------------------------------------------------------

    def _load_ips(self, conn: Connection, user_id: int) -> list[VerifiedIP]:
        rows = conn.execute(
            _verified_ips.select().where(_verified_ips.c.user_id == user_id).order_by(_verified_ips.c.id)
        ).fetchall()
        return [_row_to_verified_ip(r) for r in rows]

    def list_verified_ips(self, user_id: int) -> list[VerifiedIP]:
        """Return every IP record for the user, in creation order."""
        with self._connect() as conn:
            return self._load_ips(conn, user_id)

    def add_verified_ip(self, user_id: int, ip: str, country: str, verified: bool = True) -> None:
        """Create or update the (user_id, ip, country) record.

        Upsert keyed on the UNIQUE constraint, so re-verifying an existing
        location flips the flag instead of adding a duplicate row.
        """
        dialect = postgresql if self.engine.dialect.name == "postgresql" else sqlite
        stmt = dialect.insert(_verified_ips).values(
            user_id=user_id,
            ip=normalize_ip(ip),
            country=country.upper(),
            verified=verified,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "ip", "country"],
            set_={"verified": stmt.excluded.verified},
        )
        with self._connect() as conn:
            conn.execute(stmt)
            conn.commit()

    def record_ip_login(self, user_id: int, ip: str, country: str, lat_long: str | None, when: str) -> bool:
        """Stamp last_login/lat_long on the matching verified entry.

        One atomic UPDATE keyed by (user_id, ip, country, verified). Returns
        False if no verified row matched -- e.g. it was revoked between the
        caller's read and this write.
        """
        with self._connect() as conn:
            result = conn.execute(
                _verified_ips.update()
                .where(
                    (_verified_ips.c.user_id == user_id)
                    & (_verified_ips.c.ip == ip)
                    & (_verified_ips.c.country == country)
                    & (_verified_ips.c.verified == True)  # noqa: E712
                )
                .values(last_login=when, lat_long=lat_long)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # OTP secrets
    # ------------------------------------------------------------------

    def set_otp_secret(self, email: str, secret: str) -> None:
        """Store (or replace) the base32 TOTP secret for an email."""
        email = email.strip().lower()
        with self._connect() as conn:
            conn.execute(_otp_secrets.delete().where(_otp_secrets.c.email == email))
            conn.execute(_otp_secrets.insert().values(email=email, secret=secret, created_at=_now_iso()))
            conn.commit()

    def get_otp_secret(self, email: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                select(_otp_secrets.c.secret).where(_otp_secrets.c.email == email.strip().lower())
            ).fetchone()
        return row.secret if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, verified_ips: list[VerifiedIP]) -> User:
    return User(
        id=row.id,
        email=row.email,
        display_name=row.display_name,
        office=row.office,
        hashed_password=row.hashed_password,
        hashed_pin=row.hashed_pin,
        two_fa_enabled=bool(row.two_fa_enabled),
        is_active=bool(row.is_active),
        verified_ips=verified_ips,
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_verified_ip(row) -> VerifiedIP:
    return VerifiedIP(
        id=row.id,
        user_id=row.user_id,
        ip=row.ip,
        country=row.country,
        verified=bool(row.verified),
        last_login=row.last_login,
        lat_long=row.lat_long,
    )

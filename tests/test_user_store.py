"""
tests/test_user_store.py -- Unit tests for auth/store.py (UserStore).

Covers:
  - create_user / lookup by email (case-insensitive) and id, with IPs loaded
  - duplicate email raises IntegrityError
  - add_verified_ip upserts on (user_id, ip, country)
  - record_ip_login stamps only the matching verified row, atomically
  - OTP secret set / replace / get
  - OperationalError surfaces as StoreUnavailableError
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import StoreUnavailableError, UserStore


def _create(store: UserStore, email: str = "advisor@example.com") -> int:
    return store.create_user(User(email=email, display_name="Advisor", office="Toronto", hashed_password="x"))


class TestUsers:
    def test_has_users_flips_after_create(self, store: UserStore) -> None:
        assert store.has_users() is False
        _create(store)
        assert store.has_users() is True

    def test_get_by_email_is_case_insensitive(self, store: UserStore) -> None:
        uid = _create(store, "Advisor@Example.com")
        user = store.get_by_email("  ADVISOR@example.COM ")
        assert user is not None
        assert user.id == uid
        assert user.email == "advisor@example.com"
        assert user.office == "Toronto"
        assert user.created_at is not None

    def test_missing_user_is_none(self, store: UserStore) -> None:
        assert store.get_by_email("nobody@example.com") is None
        assert store.get_by_id(999) is None

    def test_duplicate_email_raises(self, store: UserStore) -> None:
        _create(store)
        with pytest.raises(IntegrityError):
            _create(store, "ADVISOR@example.com")

    def test_update_last_login(self, store: UserStore) -> None:
        uid = _create(store)
        assert store.get_by_id(uid).last_login is None
        store.update_last_login(uid)
        assert store.get_by_id(uid).last_login is not None

    def test_set_two_fa_enabled(self, store: UserStore) -> None:
        uid = _create(store)
        assert store.set_two_fa_enabled(uid, True) is True
        assert store.get_by_id(uid).two_fa_enabled is True
        assert store.set_two_fa_enabled(999, True) is False


class TestVerifiedIPs:
    def test_add_and_load(self, store: UserStore) -> None:
        uid = _create(store)
        store.add_verified_ip(uid, "203.0.113.7", "ca")
        store.add_verified_ip(uid, "198.51.100.23", "US", verified=False)
        ips = store.get_by_id(uid).verified_ips
        assert [(e.ip, e.country, e.verified) for e in ips] == [
            ("203.0.113.7", "CA", True),
            ("198.51.100.23", "US", False),
        ]

    def test_add_normalizes_ip(self, store: UserStore) -> None:
        uid = _create(store)
        store.add_verified_ip(uid, " ::ffff:203.0.113.7", "CA")
        assert store.list_verified_ips(uid)[0].ip == "203.0.113.7"

    def test_add_is_an_upsert(self, store: UserStore) -> None:
        uid = _create(store)
        store.add_verified_ip(uid, "203.0.113.7", "CA", verified=False)
        store.add_verified_ip(uid, "203.0.113.7", "CA", verified=True)
        ips = store.list_verified_ips(uid)
        assert len(ips) == 1
        assert ips[0].verified is True

    def test_record_ip_login_touches_only_matching_row(self, store: UserStore) -> None:
        uid = _create(store)
        store.add_verified_ip(uid, "203.0.113.7", "CA")
        store.add_verified_ip(uid, "198.51.100.23", "CA")
        assert store.record_ip_login(uid, "203.0.113.7", "CA", "43.6,-79.3", "2026-01-01T00:00:00+00:00") is True
        by_ip = {e.ip: e for e in store.list_verified_ips(uid)}
        assert by_ip["203.0.113.7"].last_login == "2026-01-01T00:00:00+00:00"
        assert by_ip["203.0.113.7"].lat_long == "43.6,-79.3"
        assert by_ip["198.51.100.23"].last_login is None
        assert by_ip["198.51.100.23"].lat_long is None

    def test_record_ip_login_refuses_unverified_row(self, store: UserStore) -> None:
        uid = _create(store)
        store.add_verified_ip(uid, "203.0.113.7", "CA", verified=False)
        assert store.record_ip_login(uid, "203.0.113.7", "CA", None, "2026-01-01T00:00:00+00:00") is False
        assert store.list_verified_ips(uid)[0].last_login is None


class TestOTPSecrets:
    def test_set_replace_get(self, store: UserStore) -> None:
        assert store.get_otp_secret("a@example.com") is None
        store.set_otp_secret("A@example.com", "FIRSTSECRET")
        store.set_otp_secret("a@example.com", "SECONDSECRET")
        assert store.get_otp_secret("a@EXAMPLE.com") == "SECONDSECRET"


def test_unreachable_database_raises_store_unavailable(tmp_path) -> None:
    missing_dir = tmp_path / "gone"
    missing_dir.mkdir()
    store = UserStore(db_url=f"sqlite:///{missing_dir / 'auth.db'}")
    store.close()
    missing_dir.joinpath("auth.db").unlink()
    for suffix in ("-wal", "-shm"):
        missing_dir.joinpath(f"auth.db{suffix}").unlink(missing_ok=True)
    missing_dir.rmdir()
    with pytest.raises(StoreUnavailableError):
        store.get_by_email("advisor@example.com")

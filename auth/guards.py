"""
auth/guards.py -- IP allow-list predicate and primary-factor verification.

Security design decisions:
  IP allow-list: exact match only. Both ip and country must equal a single
       entry that is flagged verified. No prefix, subnet, or "same country"
       leniency -- a new location goes through the out-of-band verification
       flow before it can be used.

  Secrets: bcrypt via CredentialHasher. Passwords and PINs share the hasher;
       a PIN's low entropy is offset by bcrypt's cost factor and the
       per-account login throttle.

  Timing equalization [C1]: when there is no stored hash to compare against
       (unknown user, no password set, no PIN set), bcrypt still runs against
       _DUMMY_HASH so response time does not reveal which case occurred.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

import bcrypt

from auth.models import User, VerifiedIP

logger = logging.getLogger("advisorgate.auth")


# ---------------------------------------------------------------------------
# IPAllowlistGuard
# ---------------------------------------------------------------------------


def find_verified_ip(entries: Iterable[VerifiedIP], ip: str, country: str) -> VerifiedIP | None:
    """Return the verified entry matching (ip, country) exactly, or None."""
    for entry in entries:
        if entry.verified and entry.ip == ip and entry.country == country:
            return entry
    return None


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


class CredentialHasher(Protocol):
    def compare_secret(self, candidate: str, stored_hash: str) -> bool: ...


def hash_secret(plain: str) -> str:
    """Return a bcrypt hash of a password or PIN.

    bcrypt truncates input beyond 72 bytes; the API layer caps password length
    well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


class BcryptHasher:
    """CredentialHasher backed by bcrypt.checkpw (constant-time compare)."""

    def compare_secret(self, candidate: str, stored_hash: str) -> bool:
        try:
            return bcrypt.checkpw(candidate.encode("utf-8"), stored_hash.encode("utf-8"))
        except ValueError:
            # Malformed or non-bcrypt stored hash
            logger.warning("Stored credential hash is not a valid bcrypt hash")
            return False


_DUMMY_HASH: str = hash_secret("advisorgate_timing_dummy")


# ---------------------------------------------------------------------------
# CredentialVerifier
# ---------------------------------------------------------------------------


class CredentialVerifier:
    """Checks a submitted password or PIN against the user's stored hash."""

    def __init__(self, hasher: CredentialHasher | None = None) -> None:
        self.hasher = hasher or BcryptHasher()

    def _compare(self, candidate: str, stored_hash: str | None) -> bool:
        if not stored_hash:
            self.hasher.compare_secret(candidate, _DUMMY_HASH)  # [C1]
            return False
        return self.hasher.compare_secret(candidate, stored_hash)

    def verify_password(self, user: User | None, candidate: str) -> bool:
        return self._compare(candidate, user.hashed_password if user else None)

    def verify_pin(self, user: User | None, candidate: str) -> bool:
        return self._compare(str(candidate), user.hashed_pin if user else None)

"""
auth/totp.py -- Second-factor (TOTP) verification.

The secret is looked up by email. When an operator is acting through the
backdoor path the lookup key is the operator's email, not the target's, so
the second factor always belongs to the human at the keyboard.

Every failure mode returns False: no secret enrolled, secret lookup hit a
storage outage, token wrong or malformed. The orchestrator turns all of them
into the same rejection.
"""

from __future__ import annotations

import logging
from typing import Protocol

import pyotp

from auth.store import StoreUnavailableError, UserStore

logger = logging.getLogger("advisorgate.auth")


class TOTPVerifier(Protocol):
    def verify_totp(self, secret: str, token: str) -> bool: ...


class PyOTPVerifier:
    """RFC 6238 verification via pyotp.

    valid_window=1 accepts the previous and next 30-second step as well, to
    absorb clock drift between the server and the authenticator app.
    """

    def __init__(self, valid_window: int = 1) -> None:
        self.valid_window = valid_window

    def verify_totp(self, secret: str, token: str) -> bool:
        token = token.strip().replace(" ", "")
        if not token.isdigit():
            return False
        try:
            return pyotp.TOTP(secret).verify(token, valid_window=self.valid_window)
        except (ValueError, TypeError):
            # Corrupt base32 secret
            logger.warning("Stored OTP secret could not be decoded")
            return False


class TOTPValidator:
    def __init__(self, store: UserStore, verifier: TOTPVerifier | None = None) -> None:
        self.store = store
        self.verifier = verifier or PyOTPVerifier()

    def validate(self, email: str, token: str) -> bool:
        """Return True only if email has an enrolled secret and token matches it."""
        try:
            secret = self.store.get_otp_secret(email)
        except StoreUnavailableError:
            logger.warning("OTP secret lookup failed -- storage unavailable")
            return False
        if not secret:
            return False
        return self.verifier.verify_totp(secret, token)


def generate_secret() -> str:
    """Return a new random base32 TOTP secret."""
    return pyotp.random_base32()


def provisioning_uri(secret: str, email: str, issuer: str = "AdvisorGate") -> str:
    """Return the otpauth:// URI an authenticator app scans during enrollment."""
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=issuer)

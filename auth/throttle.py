"""
auth/throttle.py -- Per-account, per-source login attempt limiting.

The slowapi limiter on the login route caps requests per source IP. This
adds a second key: (email, ip). Every attempt is counted *before* the
authentication pipeline runs, so an unknown email, a blocked IP, a wrong
password, and a wrong OTP all consume the same budget and hit the limit at
the same point. Rate limiting therefore cannot be used to learn which check
failed.

Uses the `limits` library (the engine underneath slowapi) with in-memory
storage. Swap the storage URI for redis:// when running more than one worker.
"""

from __future__ import annotations

import hashlib

from limits import parse, storage, strategies


class LoginThrottle:
    def __init__(self, rate: str = "5/minute", storage_uri: str = "memory://") -> None:
        self.rate = parse(rate)
        self._limiter = strategies.MovingWindowRateLimiter(storage.storage_from_string(storage_uri))

    @staticmethod
    def _key(email: str, ip: str) -> str:
        # Hash so raw emails never end up as keys in an external store.
        return hashlib.sha256(f"{email.strip().lower()}|{ip}".encode()).hexdigest()

    def hit(self, email: str, ip: str) -> bool:
        """Count one attempt. Returns False once the budget is exhausted."""
        return self._limiter.hit(self.rate, "login", self._key(email, ip))

    def reset(self) -> None:
        self._limiter.storage.reset()

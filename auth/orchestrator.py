"""
auth/orchestrator.py -- The single accept/reject decision for a login attempt.

Pipeline (fixed order, first failure wins):
  1. Backdoor intent    -- operator acting on another account? Force 2FA on,
                           force IP checks on unless loopback + permissible.
  2. Resolve user       -- email string -> User; unknown or inactive rejects.
  3. IP allow-list      -- (ip, country) must be a verified entry; on match,
                           stamp last_login / lat_long with one keyed UPDATE.
  4. Primary factor     -- password, or PIN when the caller allows it.
  5. Second factor      -- TOTP when the account (or backdoor path) needs it.
  6. Backdoor target    -- under backdoor, swap in the account being accessed.
  7. Success            -- on a login event, stamp the account's last_login.

Uniform failure surface:
  authenticate() returns the User or None. It never says which step failed,
  to the caller or in INFO-level logs. With options.debug the reason goes to
  DEBUG. The only exception that escapes is StoreUnavailableError, so an
  outage is never mistaken for bad credentials.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone

from auth.backdoor import BackdoorAuthority
from auth.guards import CredentialVerifier, find_verified_ip
from auth.models import AuthOptions, Credentials, User
from auth.store import UserStore
from auth.totp import TOTPValidator
from core.network import RequestContext

logger = logging.getLogger("advisorgate.auth")


class AuthenticationOrchestrator:
    def __init__(
        self,
        store: UserStore,
        credential_verifier: CredentialVerifier,
        totp_validator: TOTPValidator,
        backdoor: BackdoorAuthority | None = None,
        skip_ip_checks_default: bool = False,
    ) -> None:
        self.store = store
        self.credential_verifier = credential_verifier
        self.totp_validator = totp_validator
        self.backdoor = backdoor
        self.skip_ip_checks_default = skip_ip_checks_default

    def _resolve(self, user: User | str | None) -> User | None:
        if isinstance(user, str):
            if not user.strip():
                return None
            return self.store.get_by_email(user)
        return user

    def _reject(self, request: RequestContext, email: str, options: AuthOptions, reason: str) -> None:
        logger.info("authentication rejected for %s from %s", email or "<none>", request.ip)
        if options.debug:
            logger.debug("authentication rejected for %s: %s", email or "<none>", reason)
        return None

    def authenticate(
        self,
        request: RequestContext,
        user: User | str | None,
        credentials: Credentials | None,
        options: AuthOptions | None = None,
    ) -> User | None:
        """Run the pipeline. Returns the authenticated User, or None."""
        options = replace(options) if options is not None else AuthOptions()
        skip_ip_checks = self.skip_ip_checks_default if options.skip_ip_checks is None else options.skip_ip_checks
        skip_2fa = options.skip_2fa
        login_time = datetime.now(timezone.utc).isoformat()
        submitted_email = credentials.email if credentials else (user if isinstance(user, str) else "")
        backdoor_target: User | str | None = None

        # 1. Backdoor intent
        if options.backdoor_user:
            if self.backdoor is None or not self.backdoor.enabled:
                return self._reject(request, submitted_email, options, "backdoor disabled")
            backdoor_target = user
            skip_2fa = False
            if not self.backdoor.may_skip_ip_checks(request.ip, options.backdoor_user):
                skip_ip_checks = False
            if options.debug:
                logger.debug("backdoor login by %s", options.backdoor_user)

        # 2. Resolve user
        resolved = self._resolve(user)
        if resolved is None:
            # Equalize timing with the password path [C1]
            if credentials and credentials.password:
                self.credential_verifier.verify_password(None, credentials.password)
            return self._reject(request, submitted_email, options, "user not found")
        if not resolved.is_active:
            return self._reject(request, resolved.email, options, "user inactive")

        # 3. IP allow-list
        if not skip_ip_checks:
            entry = find_verified_ip(resolved.verified_ips, request.ip, request.country)
            if entry is None:
                return self._reject(
                    request, resolved.email, options, f"location {request.ip}/{request.country} not verified"
                )
            if not self.store.record_ip_login(
                resolved.id, entry.ip, entry.country, request.lat_long, login_time
            ):
                return self._reject(request, resolved.email, options, "verified location revoked concurrently")
            entry.last_login = login_time
            entry.lat_long = request.lat_long

        # 4. Primary factor
        if credentials is None:
            return self._reject(request, resolved.email, options, "no credentials")
        if not credentials.password:
            if not (options.allow_pin and credentials.pin and resolved.hashed_pin):
                return self._reject(request, resolved.email, options, "no password and no usable PIN")
            if not self.credential_verifier.verify_pin(resolved, credentials.pin):
                return self._reject(request, resolved.email, options, "incorrect PIN")
        elif not self.credential_verifier.verify_password(resolved, credentials.password):
            return self._reject(request, resolved.email, options, "incorrect password")

        # 5. Second factor
        if not skip_2fa and (resolved.two_fa_enabled or options.backdoor_user):
            if not credentials.two_fa_token:
                return self._reject(request, resolved.email, options, "2FA token missing")
            otp_email = options.backdoor_user or credentials.email
            if not self.totp_validator.validate(otp_email, credentials.two_fa_token):
                return self._reject(request, resolved.email, options, "2FA token invalid")

        # 6. Backdoor target
        result = resolved
        if options.backdoor_user:
            result = self._resolve(backdoor_target)
            if result is None or not result.is_active:
                return self._reject(request, resolved.email, options, "backdoor target unresolvable")
            logger.warning("backdoor access: %s acting as %s from %s", options.backdoor_user, result.email, request.ip)

        # 7. Success
        if options.is_login_event:
            # Entitlement / subscription state would attach here.
            self.store.update_last_login(result.id)
            result.last_login = login_time
        return result

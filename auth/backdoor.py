"""
auth/backdoor.py -- Operator access to another account ("backdoor" login).

Support operators sometimes need to see exactly what a client sees. Instead
of sharing client credentials, an operator signs in with the target's email
followed by their own in parentheses:

    client@example.com(operator@advisorgate.io)

The orchestrator then authenticates the request with the operator's second
factor and returns the target account.

Constraints enforced here and in the orchestrator:
  - Only emails on the permissible list can act as operators.
  - 2FA is always required on this path -- it cannot be skipped.
  - IP allow-listing may be skipped only from a loopback address AND only
    for a permissible operator. Everywhere else the normal IP check runs.

The whole capability is an injected object: a deployment that must not have
it constructs the orchestrator with backdoor=None (or enabled=False) and
every backdoor attempt rejects.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from core.network import is_loopback

logger = logging.getLogger("advisorgate.auth")


@dataclass(frozen=True)
class BackdoorLogin:
    target_email: str
    operator_email: str


class BackdoorAuthority:
    def __init__(
        self,
        permissible_emails: Iterable[str],
        operator_domain: str = "",
        enabled: bool = True,
    ) -> None:
        self.permissible_emails = frozenset(e.strip().lower() for e in permissible_emails if e.strip())
        self.operator_domain = operator_domain.strip().lower()
        self.enabled = enabled and bool(self.permissible_emails)

    @classmethod
    def from_settings(cls, settings) -> "BackdoorAuthority | None":
        if not settings.backdoor_enabled:
            return None
        return cls(
            settings.permissible_backdoor_emails,
            operator_domain=settings.backdoor_operator_domain,
        )

    def is_permissible(self, email: str | None) -> bool:
        if not self.enabled or not email:
            return False
        return email.strip().lower() in self.permissible_emails

    def may_skip_ip_checks(self, ip: str, email: str | None) -> bool:
        """Loopback origin and a permissible operator -- both, or no skip."""
        return is_loopback(ip) and self.is_permissible(email)

    def parse_login_identifier(self, raw: str) -> BackdoorLogin | None:
        """Split "target(operator)" into its parts if it is a valid backdoor login.

        Returns None for ordinary emails and for any bracketed form whose
        operator is not permissible (or not on the operator domain, when one
        is configured). The caller then treats the whole string as an email,
        which will simply fail to resolve.
        """
        value = raw.strip()
        if not (value.endswith(")") and "(" in value):
            return None
        target, _, rest = value.partition("(")
        operator = rest[:-1].strip().lower()
        target = target.strip().lower()
        if not target or not operator:
            return None
        if self.operator_domain and operator.rpartition("@")[2] != self.operator_domain:
            return None
        if not self.is_permissible(operator):
            logger.warning("Backdoor login attempted with non-permissible operator %s", operator)
            return None
        return BackdoorLogin(target_email=target, operator_email=operator)

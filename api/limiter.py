"""
api/limiter.py -- Shared rate limiters and the requester-IP resolver.

client_ip(): the one requester address for the app, resolved per the
TRUST_FORWARDED_HEADERS / TRUSTED_PROXY_COUNT settings. It keys slowapi and
feeds request_context(), so the allow-list check, the backdoor loopback test
and LoginThrottle all see the same value.

limiter: slowapi instance keyed on client_ip. Mounted as middleware in
api/main.py and applied per-route with @limiter.limit().

login_throttle: the per-(account, source IP) counter from auth/throttle.py,
consulted by the login route before the pipeline runs.

Single shared instances so every route sees the same in-memory counters.
"""

from fastapi import Request
from slowapi import Limiter

from auth.throttle import LoginThrottle
from core.config import get_settings
from core.network import RequestContext, request_ip

_settings = get_settings()


def client_ip(request: Request) -> str:
    return request_ip(request, _settings.trust_forwarded_headers, _settings.trusted_proxy_count)


def request_context(request: Request) -> RequestContext:
    return RequestContext.from_request(request, _settings.trust_forwarded_headers, _settings.trusted_proxy_count)


limiter = Limiter(key_func=client_ip, storage_uri="memory://")
login_throttle = LoginThrottle(_settings.account_rate_limit)

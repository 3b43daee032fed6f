"""
core/network.py -- Requester IP, country, and location extraction.

Every address that enters the system goes through normalize_ip() exactly
once, at ingestion. Downstream comparisons (allow-list match, loopback test
for the backdoor path) then work on one canonical form instead of guessing at
formatting variants like "::1" vs " ::1" vs "localhost".

Geo headers are set by the edge (CloudFront, Vercel, OpenNext, Cloudflare).
They are only as trustworthy as the proxy in front of the app; run behind one
that strips client-supplied copies.

Layer rule: core/ is the kernel. No imports from api/, web/, or auth/.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

_UNKNOWN_IP = "unknown"

# First non-empty value wins.
_COUNTRY_HEADERS = (
    "x-open-next-country",
    "cloudfront-viewer-country",
    "x-vercel-ip-country",
    "cf-ipcountry",
    "x-country",
)
_LATITUDE_HEADERS = ("x-open-next-latitude", "cloudfront-viewer-latitude")
_LONGITUDE_HEADERS = ("x-open-next-longitude", "cloudfront-viewer-longitude")


def normalize_ip(raw: Optional[str]) -> str:
    """Return the canonical text form of an IP address.

    Takes the first hop of a comma-separated forwarding list, strips
    whitespace, maps "localhost" to 127.0.0.1 and IPv4-mapped IPv6 addresses
    to plain IPv4. Input that does not parse is returned stripped and
    lower-cased so it can still be compared, but it never counts as loopback.
    """
    if not raw:
        return _UNKNOWN_IP
    candidate = raw.split(",")[0].strip().lower()
    if not candidate:
        return _UNKNOWN_IP
    if candidate == "localhost":
        return "127.0.0.1"
    # "[::1]:443" and "127.0.0.1:8080" forms
    if candidate.startswith("[") and "]" in candidate:
        candidate = candidate[1 : candidate.index("]")]
    elif candidate.count(":") == 1:
        candidate = candidate.split(":")[0]
    try:
        addr = ipaddress.ip_address(candidate)
    except ValueError:
        return candidate
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return str(addr)


def is_loopback(ip: str) -> bool:
    """Return True only for a parseable loopback address (127.0.0.0/8, ::1)."""
    try:
        return ipaddress.ip_address(normalize_ip(ip)).is_loopback
    except ValueError:
        return False


def _header(headers: Mapping[str, str], names: tuple[str, ...]) -> str:
    for name in names:
        value = headers.get(name)
        if value and value.strip():
            return value.strip()
    return ""


def request_country(headers: Mapping[str, str]) -> str:
    """Return the requester's ISO 3166-1 alpha-2 country, or "" if unknown."""
    return _header(headers, _COUNTRY_HEADERS).upper()


def request_lat_long(headers: Mapping[str, str]) -> Optional[str]:
    """Return "lat,long" from edge geo headers, or None when both are absent."""
    lat = _header(headers, _LATITUDE_HEADERS)
    long = _header(headers, _LONGITUDE_HEADERS)
    if not lat and not long:
        return None
    return f"{lat},{long}"


def request_ip(request, trust_forwarded: bool = False, proxy_count: int = 1) -> str:
    """Return the normalized requester IP for a Starlette request.

    Without trust_forwarded the socket peer is used and X-Forwarded-For is
    ignored. With it, the address is the hop proxy_count entries from the
    right: each trusted proxy appends the peer it saw, so everything left of
    that hop is client-supplied. A header shorter than proxy_count did not
    pass through the full proxy chain and falls back to the socket peer.
    """
    if trust_forwarded and proxy_count > 0:
        hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",")]
        hops = [hop for hop in hops if hop]
        if len(hops) >= proxy_count:
            return normalize_ip(hops[-proxy_count])
    client = getattr(request, "client", None)
    return normalize_ip(client.host if client else None)


def country_is_served(country: str, serve: list[str], deny: list[str]) -> bool:
    """Geo gate for login attempts.

    With a serve list, only those countries pass (unknown country fails).
    Without one, everything passes except the deny list.
    """
    if serve:
        return country in serve
    return country not in deny


@dataclass(frozen=True)
class RequestContext:
    """Requester metadata the authentication pipeline needs, nothing else.

    Built once per request so the orchestrator never touches framework
    objects and can be driven directly from tests.
    """

    ip: str
    country: str
    lat_long: Optional[str] = None

    @classmethod
    def from_request(cls, request, trust_forwarded: bool = False, proxy_count: int = 1) -> "RequestContext":
        headers = request.headers
        return cls(
            ip=request_ip(request, trust_forwarded, proxy_count),
            country=request_country(headers),
            lat_long=request_lat_long(headers),
        )

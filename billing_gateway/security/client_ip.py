"""Client IP extraction for webhook admission.

Header precedence (first valid address wins):
1. cf-connecting-ip  (Cloudflare)
2. x-real-ip         (nginx)
3. x-forwarded-for   (first syntactically valid entry)

Only literal IPv4/IPv6 addresses are accepted. ``host:port`` and
``[v6]:port`` forms are reduced to the address; anything else is rejected.
"""

from __future__ import annotations

import ipaddress
from typing import Mapping

UNKNOWN_CLIENT_KEY = "unknown"

_SINGLE_IP_HEADERS = ("cf-connecting-ip", "x-real-ip")
_FORWARDED_FOR_HEADER = "x-forwarded-for"


def _parse(candidate: str) -> str | None:
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def normalize_ip(value: str | None) -> str | None:
    """Return the canonical form of ``value`` if it is a literal IP, else None."""
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None

    parsed = _parse(trimmed)
    if parsed:
        return parsed

    # [2001:db8::1]:443
    if trimmed.startswith("[") and "]" in trimmed:
        return _parse(trimmed[1 : trimmed.index("]")])

    # 203.0.113.5:8080 (exactly one colon, so never a bare IPv6)
    parts = trimmed.split(":")
    if len(parts) == 2:
        return _parse(parts[0])

    return None


def get_client_ip(headers: Mapping[str, str]) -> str | None:
    """Resolve the caller's IP from proxy headers.

    Args:
        headers: Request headers with lowercase keys

    Returns:
        Canonical IP string, or None if no header carries a valid address
    """
    for name in _SINGLE_IP_HEADERS:
        ip = normalize_ip(headers.get(name))
        if ip:
            return ip

    forwarded = headers.get(_FORWARDED_FOR_HEADER) or ""
    for entry in forwarded.split(","):
        ip = normalize_ip(entry)
        if ip:
            return ip

    return None


def rate_limit_key(client_ip: str | None) -> str:
    """Rate-limit bucket key; all unidentifiable callers share one bucket."""
    return client_ip or UNKNOWN_CLIENT_KEY

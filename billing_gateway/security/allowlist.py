"""IP allowlist for webhook origins.

An empty allowlist disables the filter. A non-empty one admits only exact
members; callers without a resolvable IP are denied.
"""

from __future__ import annotations

import logging
from typing import Iterable

from billing_gateway.security.client_ip import normalize_ip

logger = logging.getLogger(__name__)


class IpAllowlist:
    """Exact-match set of literal IP addresses."""

    def __init__(self, entries: Iterable[str] = ()):
        allowed: set[str] = set()
        for entry in entries:
            ip = normalize_ip(entry)
            if ip is None:
                logger.warning("Ignoring invalid allowlist entry: %r", entry)
                continue
            allowed.add(ip)
        self._allowed = frozenset(allowed)

    @classmethod
    def from_csv(cls, raw: str) -> IpAllowlist:
        """Build from a comma-separated list such as ``"203.0.113.5, 2001:db8::1"``."""
        return cls(item for item in raw.split(",") if item.strip())

    @property
    def enabled(self) -> bool:
        return bool(self._allowed)

    def __len__(self) -> int:
        return len(self._allowed)

    def __contains__(self, ip: object) -> bool:
        return isinstance(ip, str) and normalize_ip(ip) in self._allowed

    def is_allowed(self, client_ip: str | None) -> bool:
        if not self._allowed:
            return True
        if client_ip is None:
            return False
        return normalize_ip(client_ip) in self._allowed

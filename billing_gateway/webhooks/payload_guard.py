"""Body size limits, checked twice.

1. Before the read, against the caller's Content-Length (cheap, honest callers)
2. After the read, against the bytes actually received (liars and chunked bodies)
"""

from __future__ import annotations

from billing_gateway.config import MAX_WEBHOOK_BODY_BYTES
from billing_gateway.webhooks.errors import PayloadTooLarge


def parse_content_length(value: str | None) -> int | None:
    """Declared body length, or None if absent or not a non-negative integer."""
    if value is None:
        return None
    value = value.strip()
    if not value.isdecimal():
        return None
    return int(value)


def check_declared_size(content_length: str | None, limit: int = MAX_WEBHOOK_BODY_BYTES) -> None:
    declared = parse_content_length(content_length)
    if declared is not None and declared > limit:
        raise PayloadTooLarge(f"declared content-length {declared} > {limit}")


def check_actual_size(body: bytes, limit: int = MAX_WEBHOOK_BODY_BYTES) -> None:
    if len(body) > limit:
        raise PayloadTooLarge(f"body of at least {len(body)} bytes > {limit}")

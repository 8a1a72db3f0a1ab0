"""Webhook credential verification: shared secret, then HMAC signature.

Security contract:
- All comparisons use hmac.compare_digest() after an explicit length check
  (unequal lengths short-circuit to "invalid"; length is not secret)
- Missing server-side secret or signing key -> ConfigurationError (500),
  never a silent accept
- Empty presented secret/signature is rejected before any comparison
- Signature = base64(HMAC-SHA256(signing_key, raw_body)) over the exact
  bytes received, before any JSON parsing
- Secret and signature failures raise the same AuthenticationFailed (401)
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Mapping

from billing_gateway.webhooks.errors import AuthenticationFailed, ConfigurationError

logger = logging.getLogger(__name__)

SECRET_HEADER = "x-webhook-secret"
SIGNATURE_HEADER = "x-webhook-signature"

# Query-string fallbacks, in order, for providers that can only configure a URL
SECRET_QUERY_PARAMS = ("webhookSecret", "secret")


def constant_time_equals(expected: str, received: str) -> bool:
    """Compare two strings in constant time with respect to their content."""
    expected_bytes = expected.encode("utf-8")
    received_bytes = received.encode("utf-8")
    if len(expected_bytes) != len(received_bytes):
        return False
    return hmac.compare_digest(expected_bytes, received_bytes)


def get_presented_secret(
    headers: Mapping[str, str],
    query_params: Mapping[str, str] | None = None,
) -> str:
    """Secret sent by the caller: header first, then query-string fallbacks.

    Args:
        headers: Request headers (lowercase keys)
        query_params: Parsed query string

    Returns:
        The trimmed secret, or "" when none was sent
    """
    header_secret = (headers.get(SECRET_HEADER) or "").strip()
    if header_secret:
        return header_secret

    for name in SECRET_QUERY_PARAMS:
        value = ((query_params or {}).get(name) or "").strip()
        if value:
            return value
    return ""


def get_presented_signature(headers: Mapping[str, str]) -> str:
    return (headers.get(SIGNATURE_HEADER) or "").strip()


def compute_signature(signing_key: str, body: bytes) -> str:
    """base64-encoded HMAC-SHA256 of ``body``."""
    digest = hmac.new(signing_key.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(signing_key: str, body: bytes, signature: str) -> bool:
    """True iff ``signature`` is the HMAC of exactly ``body`` under ``signing_key``."""
    if not signature:
        return False
    return constant_time_equals(compute_signature(signing_key, body), signature)


def check_shared_secret(configured_secret: str | None, presented_secret: str) -> None:
    """Raise unless the caller presented the configured shared secret.

    Raises:
        ConfigurationError: No secret configured on the server
        AuthenticationFailed: Secret missing or wrong
    """
    if not configured_secret:
        raise ConfigurationError("shared webhook secret not configured")
    if not presented_secret:
        raise AuthenticationFailed("webhook secret missing", stage="secret_check")
    if not constant_time_equals(configured_secret, presented_secret):
        raise AuthenticationFailed("webhook secret invalid", stage="secret_check")


def check_signing_key(signing_key: str | None) -> str:
    """Return the signing key, or raise ConfigurationError if it is unset."""
    if not signing_key:
        raise ConfigurationError("webhook signing key not configured")
    return signing_key


def check_signature(signing_key: str | None, body: bytes, signature: str) -> None:
    """Raise unless ``signature`` authenticates ``body``.

    Raises:
        ConfigurationError: No signing key configured on the server
        AuthenticationFailed: Signature missing or wrong
    """
    key = check_signing_key(signing_key)
    if not signature:
        raise AuthenticationFailed("webhook signature missing", stage="signature_check")
    if not verify_signature(key, body, signature):
        raise AuthenticationFailed("webhook signature invalid", stage="signature_check")

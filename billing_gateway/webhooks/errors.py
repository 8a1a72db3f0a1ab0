"""Webhook admission errors.

Each error maps to exactly one HTTP status and carries a public message that
is safe to return to the caller. ``reason`` is for server logs only: it says
which check failed, which the response must never reveal.
"""

from __future__ import annotations


class WebhookAdmissionError(Exception):
    """Base class: a terminal rejection in the admission pipeline."""

    status_code = 500
    message = "Webhook rejected"
    stage = "unknown"

    def __init__(self, reason: str = "", headers: dict[str, str] | None = None):
        self.reason = reason or self.message
        self.headers = headers or {}
        super().__init__(self.reason)


class ConfigurationError(WebhookAdmissionError):
    """Secret or signing key missing on the server. Never says which."""

    status_code = 500
    message = "Webhook not configured on server"
    stage = "config"


class AdmissionDenied(WebhookAdmissionError):
    """Caller IP is not on the allowlist."""

    status_code = 403
    message = "Webhook origin not allowed"
    stage = "ip_check"


class RateLimited(WebhookAdmissionError):
    """Too many requests from this client key in the current window."""

    status_code = 429
    message = "Webhook rate limit exceeded"
    stage = "rate_check"

    def __init__(self, retry_after_seconds: int, reason: str = ""):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            reason or f"rate limited, retry after {retry_after_seconds}s",
            headers={"Retry-After": str(retry_after_seconds)},
        )


class AuthenticationFailed(WebhookAdmissionError):
    """Missing/invalid secret or missing/invalid signature.

    All four causes share one public message so the endpoint is not an
    oracle for which credential was wrong.
    """

    status_code = 401
    message = "Unauthorized"
    stage = "auth"

    def __init__(self, reason: str = "", stage: str = "auth"):
        self.stage = stage
        super().__init__(reason)


class PayloadTooLarge(WebhookAdmissionError):
    status_code = 413
    message = "Payload exceeds the allowed size"
    stage = "size_check"


class MalformedPayload(WebhookAdmissionError):
    """Body is not valid JSON. Only reachable after every security check passed."""

    status_code = 400
    message = "Invalid JSON payload"
    stage = "parse"


class ApplierFailure(WebhookAdmissionError):
    """The event applier raised. Detail goes to the log, not the caller."""

    status_code = 500
    message = "Internal error while processing webhook"
    stage = "apply"

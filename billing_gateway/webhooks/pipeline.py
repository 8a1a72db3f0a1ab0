"""Webhook admission pipeline.

Order of checks (each one either rejects terminally or continues):

    IP allowlist        -> 403
    rate limit          -> 429 + Retry-After
    shared secret       -> 500 (not configured) / 401
    declared size       -> 413   (before the body is read)
    read body
    actual size         -> 413
    signature           -> 500 (not configured) / 401
    JSON parse          -> 400
    apply               -> 200 {duplicate, processed} / 500

A replayed event is a 200 with ``duplicate: true``: the provider must not
retry it. Responses never carry internal error text; the reason for every
rejection is in the WEBHOOK_AUDIT log line instead.

The pipeline is framework-agnostic. ``handlers.py`` adapts FastAPI requests
to ``InboundWebhookRequest``.
"""

from __future__ import annotations

import inspect
import json
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from starlette.concurrency import run_in_threadpool

from billing_gateway.billing.applier import ApplyResult, EventApplier
from billing_gateway.config import WebhookSettings
from billing_gateway.security.allowlist import IpAllowlist
from billing_gateway.security.client_ip import get_client_ip, rate_limit_key
from billing_gateway.security.rate_limit import FixedWindowRateLimiter
from billing_gateway.webhooks.errors import (
    AdmissionDenied,
    ApplierFailure,
    MalformedPayload,
    RateLimited,
    WebhookAdmissionError,
)
from billing_gateway.webhooks.payload_guard import check_actual_size, check_declared_size
from billing_gateway.webhooks.verification import (
    check_shared_secret,
    check_signature,
    get_presented_secret,
    get_presented_signature,
)

logger = logging.getLogger(__name__)


@dataclass
class InboundWebhookRequest:
    """One inbound webhook call, as seen by the pipeline.

    ``read_body`` is only awaited once the caller has passed the IP, rate,
    secret and declared-size checks.
    """

    headers: Mapping[str, str]
    read_body: Callable[[], Awaitable[bytes]]
    query_params: Mapping[str, str] = field(default_factory=dict)

    @property
    def client_ip(self) -> str | None:
        return get_client_ip(self.headers)

    @property
    def content_length(self) -> str | None:
        return self.headers.get("content-length")


@dataclass
class WebhookResponse:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_error(cls, exc: WebhookAdmissionError) -> WebhookResponse:
        return cls(
            status_code=exc.status_code,
            body={"ok": False, "error": exc.message},
            headers=dict(exc.headers),
        )

    @classmethod
    def accepted(cls, result: ApplyResult) -> WebhookResponse:
        return cls(
            status_code=200,
            body={"ok": True, "duplicate": result.duplicate, "processed": result.processed},
        )


def parse_json_body(body: bytes) -> Any:
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"invalid JSON: {type(e).__name__}") from e


class WebhookAdmissionPipeline:
    """Accepts or rejects inbound billing webhooks before they reach the applier.

    Args:
        settings: Secrets, allowlist and rate-limit knobs
        applier: Applies a verified payload exactly once per provider event id
        rate_limiter: Shared limiter; built from ``settings`` when omitted
        allowlist: Built from ``settings.allowed_ips`` when omitted
    """

    def __init__(
        self,
        settings: WebhookSettings,
        applier: EventApplier,
        rate_limiter: FixedWindowRateLimiter | None = None,
        allowlist: IpAllowlist | None = None,
    ):
        self.settings = settings
        self.applier = applier
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            max_requests=settings.rate_limit_max,
            window_seconds=settings.rate_limit_window_seconds,
        )
        self.allowlist = allowlist or IpAllowlist(settings.allowed_ips)
        self._counts: dict[int, int] = defaultdict(int)
        self._counts_lock = threading.Lock()

    async def handle(self, request: InboundWebhookRequest) -> WebhookResponse:
        """Run every check in order and return the HTTP response to send."""
        start = time.time()
        client_ip = request.client_ip

        try:
            result = await self._admit(request, client_ip)
        except WebhookAdmissionError as exc:
            self._audit(exc.stage, exc.status_code, client_ip, exc.reason)
            return WebhookResponse.from_error(exc)

        self._audit(
            "apply",
            200,
            client_ip,
            "duplicate" if result.duplicate else ("processed" if result.processed else "ignored"),
        )
        logger.debug("Webhook admitted in %.1fms", (time.time() - start) * 1000)
        return WebhookResponse.accepted(result)

    async def _admit(self, request: InboundWebhookRequest, client_ip: str | None) -> ApplyResult:
        if not self.allowlist.is_allowed(client_ip):
            raise AdmissionDenied(f"client {client_ip or 'unresolved'} not in allowlist")

        limit = self.rate_limiter.check(rate_limit_key(client_ip))
        if limit.limited:
            raise RateLimited(limit.retry_after_seconds)

        check_shared_secret(
            self.settings.webhook_secret,
            get_presented_secret(request.headers, request.query_params),
        )

        check_declared_size(request.content_length, self.settings.max_body_bytes)
        body = await request.read_body()
        check_actual_size(body, self.settings.max_body_bytes)

        check_signature(self.settings.signature_key, body, get_presented_signature(request.headers))

        payload = parse_json_body(body)
        return await self._apply(payload)

    async def _apply(self, payload: Any) -> ApplyResult:
        try:
            apply = self.applier.apply_verified_event
            if inspect.iscoroutinefunction(apply):
                return await apply(payload)
            result = await run_in_threadpool(apply, payload)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            logger.exception("Event applier failed")
            raise ApplierFailure(f"{type(e).__name__}: {e}") from e

    def _audit(self, stage: str, status: int, client_ip: str | None, detail: str) -> None:
        with self._counts_lock:
            self._counts[status] += 1
            count = self._counts[status]
        logger.info(
            "WEBHOOK_AUDIT stage=%s status=%d client=%s detail=%s count=%d",
            stage,
            status,
            client_ip or "unknown",
            detail,
            count,
        )

    def stats(self) -> dict[int, int]:
        """Responses sent so far, by status code."""
        with self._counts_lock:
            return dict(self._counts)

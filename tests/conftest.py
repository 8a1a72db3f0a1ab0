"""Shared fixtures for the billing gateway test suite."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import threading
from dataclasses import replace
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from billing_gateway.billing.applier import WebhookEventApplier
from billing_gateway.billing.event_store import WebhookProcessingStatus
from billing_gateway.billing.events import ProviderEvent
from billing_gateway.config import WebhookSettings
from billing_gateway.serve import create_app

WEBHOOK_SECRET = "whsec-test-shared-secret"
SIGNATURE_KEY = "sigkey-test-signing-key"


class InMemoryEventStore:
    """Ledger double with the same atomic insert-if-absent contract."""

    def __init__(self) -> None:
        self.events: dict[str, ProviderEvent] = {}
        self.statuses: dict[str, WebhookProcessingStatus] = {}
        self.errors: dict[str, str | None] = {}
        self._lock = threading.Lock()

    def record_received(self, event: ProviderEvent) -> bool:
        with self._lock:
            if event.id in self.events:
                return False
            self.events[event.id] = event
            self.statuses[event.id] = WebhookProcessingStatus.RECEIVED
            return True

    def mark(
        self,
        event_id: str,
        status: WebhookProcessingStatus,
        error_message: str | None = None,
    ) -> None:
        with self._lock:
            self.statuses[event_id] = status
            self.errors[event_id] = error_message


@pytest.fixture()
def webhook_secret() -> str:
    return WEBHOOK_SECRET


@pytest.fixture()
def signature_key() -> str:
    return SIGNATURE_KEY


@pytest.fixture()
def settings() -> WebhookSettings:
    """Fully configured settings: secret + signing key, no allowlist, default limits."""
    return WebhookSettings(webhook_secret=WEBHOOK_SECRET, signature_key=SIGNATURE_KEY)


@pytest.fixture()
def sign() -> Callable[..., str]:
    """Factory: base64(HMAC-SHA256(key, body)), the way the provider signs."""

    def _sign(body: bytes, key: str = SIGNATURE_KEY) -> str:
        digest = hmac.new(key.encode(), body, hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    return _sign


@pytest.fixture()
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def outcome_handler() -> MagicMock:
    """Business-effect double: every event matches a checkout."""
    return MagicMock(return_value=True)


@pytest.fixture()
def applier(event_store, outcome_handler) -> WebhookEventApplier:
    return WebhookEventApplier(event_store, outcome_handler)


@pytest.fixture()
def make_client(settings, applier):
    """Factory: TestClient over create_app() with overridden settings/applier.

    TESTING=1 skips ledger table creation on startup.
    """
    clients: list[TestClient] = []
    os.environ["TESTING"] = "1"

    def _make(applier_override=None, **setting_overrides) -> TestClient:
        app = create_app(
            settings=replace(settings, **setting_overrides),
            applier=applier_override or applier,
        )
        c = TestClient(app, raise_server_exceptions=False)
        c.__enter__()
        clients.append(c)
        return c

    yield _make

    for c in clients:
        c.__exit__(None, None, None)
    os.environ.pop("TESTING", None)


@pytest.fixture()
def client(make_client) -> TestClient:
    """Fully configured client: no allowlist, default rate limit, real applier."""
    return make_client()


@pytest.fixture()
def payment_event() -> dict:
    return {
        "id": "evt_paid_001",
        "event": "billing.paid",
        "data": {"billing": {"id": "bill_123", "status": "PAID", "amount": 5000}},
    }


@pytest.fixture()
def encode() -> Callable[[Any], bytes]:
    def _encode(payload: Any) -> bytes:
        return json.dumps(payload).encode()

    return _encode


@pytest.fixture()
def signed_headers(webhook_secret, sign):
    """Factory: headers for a request that passes every credential check."""

    def _make(body: bytes, ip: str = "203.0.113.5", **extra: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Secret": webhook_secret,
            "X-Webhook-Signature": sign(body),
            "X-Real-IP": ip,
        }
        headers.update(extra)
        return headers

    return _make

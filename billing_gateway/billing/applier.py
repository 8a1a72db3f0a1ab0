"""Event applier: applies each verified provider event at most once.

Flow for ``apply_verified_event``:
1. Validate payload (id + event)          -> InvalidEventPayload
2. Record id in the ledger                -> duplicate? return (True, False)
3. Infer checkout outcome                 -> none? IGNORED, (False, False)
4. Hand outcome to the business handler   -> PROCESSED, (False, True)
   handler found nothing to update        -> IGNORED, (False, False)
   handler raised                         -> FAILED, re-raise

The ledger insert in step 2 is the only idempotency gate. Provider
delivery order is not guaranteed and is never relied on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from billing_gateway.billing.event_store import (
    PostgresWebhookEventStore,
    RedisWebhookEventStore,
    WebhookEventStore,
    WebhookProcessingStatus,
)
from billing_gateway.billing.events import (
    CheckoutOutcome,
    ProviderEvent,
    infer_checkout_outcome,
    parse_event,
)
from billing_gateway.config import WebhookSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyResult:
    duplicate: bool
    processed: bool


class EventApplier(Protocol):
    """What the admission pipeline calls once a payload is verified and parsed.

    Must apply a given provider event id at most once and report replays
    honestly as ``duplicate``. May raise; the pipeline turns that into a 500.
    """

    def apply_verified_event(self, payload: Any) -> ApplyResult: ...


class OutcomeHandler(Protocol):
    """Business effect of a checkout outcome (subscription/checkout updates).

    Returns False when the event matches no known checkout.
    """

    def __call__(self, event: ProviderEvent, outcome: CheckoutOutcome) -> bool: ...


class WebhookEventApplier:
    """Ledger-backed EventApplier."""

    def __init__(self, store: WebhookEventStore, handle_outcome: OutcomeHandler):
        self.store = store
        self.handle_outcome = handle_outcome

    def apply_verified_event(self, payload: Any) -> ApplyResult:
        event = parse_event(payload)

        if not self.store.record_received(event):
            return ApplyResult(duplicate=True, processed=False)

        outcome = infer_checkout_outcome(event)
        if outcome is None:
            logger.info("No checkout outcome for %s/%s, ignoring", event.event, event.id)
            self.store.mark(event.id, WebhookProcessingStatus.IGNORED)
            return ApplyResult(duplicate=False, processed=False)

        try:
            matched = self.handle_outcome(event, outcome)
        except Exception as e:
            self.store.mark(event.id, WebhookProcessingStatus.FAILED, str(e) or type(e).__name__)
            raise

        if not matched:
            self.store.mark(
                event.id,
                WebhookProcessingStatus.IGNORED,
                "No checkout found for the received event",
            )
            return ApplyResult(duplicate=False, processed=False)

        self.store.mark(event.id, WebhookProcessingStatus.PROCESSED)
        logger.info("Applied %s (%s) for event %s", event.event, outcome.value, event.id)
        return ApplyResult(duplicate=False, processed=True)


def build_event_store(settings: WebhookSettings) -> WebhookEventStore:
    """Ledger backend selected by ``settings.event_store``."""
    if settings.event_store == "redis":
        return RedisWebhookEventStore(redis_url=settings.redis_url)
    return PostgresWebhookEventStore(settings.database_url)

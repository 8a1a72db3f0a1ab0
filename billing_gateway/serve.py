"""FastAPI application for the billing webhook gateway.

Run with:  uvicorn --factory billing_gateway.serve:create_app

Set TESTING=1 to skip startup side effects (ledger table creation).
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from billing_gateway.billing.applier import (
    EventApplier,
    OutcomeHandler,
    WebhookEventApplier,
    build_event_store,
)
from billing_gateway.billing.event_store import PostgresWebhookEventStore
from billing_gateway.billing.events import CheckoutOutcome, ProviderEvent
from billing_gateway.config import WebhookSettings
from billing_gateway.webhooks.handlers import register_webhook_routes
from billing_gateway.webhooks.pipeline import WebhookAdmissionPipeline

logger = logging.getLogger(__name__)


def _unhandled_outcome(event: ProviderEvent, outcome: CheckoutOutcome) -> bool:
    logger.warning(
        "No checkout handler configured; event %s (%s) recorded but not applied",
        event.id,
        outcome.value,
    )
    return False


def create_app(
    settings: WebhookSettings | None = None,
    applier: EventApplier | None = None,
    outcome_handler: OutcomeHandler | None = None,
) -> FastAPI:
    """Build the gateway app.

    Args:
        settings: Defaults to ``WebhookSettings.from_env()``
        applier: Defaults to a ledger-backed WebhookEventApplier
        outcome_handler: Business effect for the default applier
    """
    settings = settings or WebhookSettings.from_env()
    store = None
    if applier is None:
        store = build_event_store(settings)
        applier = WebhookEventApplier(store, outcome_handler or _unhandled_outcome)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(store, PostgresWebhookEventStore) and not os.environ.get("TESTING"):
            store.init_tables()
        yield

    app = FastAPI(title="Billing Webhook Gateway", lifespan=lifespan)
    pipeline = WebhookAdmissionPipeline(settings, applier)
    app.state.webhook_pipeline = pipeline

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    register_webhook_routes(app, pipeline)
    return app


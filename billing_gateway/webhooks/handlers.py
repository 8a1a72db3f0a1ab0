"""Webhook HTTP handler: adapts FastAPI requests to the admission pipeline.

The handler does no checking of its own. It only:
1. Lowercases headers and copies the query string
2. Provides a body reader that stops once the size ceiling is exceeded
3. Serializes the pipeline's WebhookResponse
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from billing_gateway.webhooks.pipeline import InboundWebhookRequest, WebhookAdmissionPipeline

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhooks/billing"


async def read_body_bounded(request: Request, limit: int) -> bytes:
    """Read the request body, stopping after ``limit + 1`` bytes.

    Enough to let the size guard see an oversized body without buffering
    the whole thing.
    """
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        chunks.append(chunk)
        received += len(chunk)
        if received > limit:
            break
    return b"".join(chunks)


def to_inbound_request(request: Request, limit: int) -> InboundWebhookRequest:
    async def _read() -> bytes:
        return await read_body_bounded(request, limit)

    return InboundWebhookRequest(
        headers={k.lower(): v for k, v in request.headers.items()},
        query_params=dict(request.query_params),
        read_body=_read,
    )


def register_webhook_routes(app: FastAPI, pipeline: WebhookAdmissionPipeline) -> None:
    """Register the billing webhook endpoint on the FastAPI app."""

    @app.post(WEBHOOK_PATH)
    async def billing_webhook(request: Request):
        """Receive billing provider webhooks (allowlisted, rate limited, signed)."""
        inbound = to_inbound_request(request, pipeline.settings.max_body_bytes)
        response = await pipeline.handle(inbound)
        return JSONResponse(
            response.body,
            status_code=response.status_code,
            headers=response.headers or None,
        )

    logger.info("Webhook route registered: %s", WEBHOOK_PATH)

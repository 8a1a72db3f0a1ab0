"""Webhook event ledger: one row per provider event id.

The ledger is the idempotency record. ``record_received`` is an atomic
insert-if-absent keyed by event id, so of any number of concurrent or
replayed deliveries exactly one sees ``True`` and goes on to apply the
event. Storage must survive restarts; there is deliberately no in-memory
backend.

Backends:
- Postgres (default): primary key on id, INSERT ... ON CONFLICT DO NOTHING
- Redis: SET NX on ``webhook:event:{id}`` with no TTL, status in a hash
"""

from __future__ import annotations

import enum
import json
import logging
from typing import Protocol

import psycopg
import redis
from psycopg.rows import dict_row

from billing_gateway.billing.events import ProviderEvent

logger = logging.getLogger(__name__)

PROVIDER_NAME = "billing"


class WebhookProcessingStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    IGNORED = "IGNORED"
    FAILED = "FAILED"


class WebhookEventStore(Protocol):
    def record_received(self, event: ProviderEvent) -> bool:
        """Insert the event as RECEIVED. False if its id is already recorded."""
        ...

    def mark(
        self,
        event_id: str,
        status: WebhookProcessingStatus,
        error_message: str | None = None,
    ) -> None:
        ...


# ---------------------------------------------------------------------------
# Postgres
# ---------------------------------------------------------------------------


class PostgresWebhookEventStore:
    """Postgres-backed ledger (table ``billing_webhook_events``)."""

    def __init__(self, database_url: str):
        self._database_url = database_url

    def _get_conn(self) -> psycopg.Connection:
        return psycopg.connect(self._database_url, autocommit=True, row_factory=dict_row)

    def init_tables(self) -> None:
        """Create the ledger table if it doesn't exist.  Idempotent."""
        with self._get_conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS billing_webhook_events (
                    id             TEXT PRIMARY KEY,
                    provider       TEXT NOT NULL,
                    event_type     TEXT NOT NULL,
                    status         TEXT NOT NULL,
                    payload        JSONB NOT NULL,
                    error_message  TEXT,
                    received_at    TIMESTAMPTZ DEFAULT now(),
                    processed_at   TIMESTAMPTZ
                )
            """)

    def record_received(self, event: ProviderEvent) -> bool:
        with self._get_conn() as conn:
            row = conn.execute(
                """INSERT INTO billing_webhook_events (id, provider, event_type, status, payload)
                   VALUES (%s, %s, %s, %s, %s)
                   ON CONFLICT (id) DO NOTHING
                   RETURNING id""",
                (
                    event.id,
                    PROVIDER_NAME,
                    event.event,
                    WebhookProcessingStatus.RECEIVED.value,
                    json.dumps(event.model_dump(mode="json")),
                ),
            ).fetchone()
        if row is None:
            logger.info("Duplicate webhook event: %s", event.id)
            return False
        return True

    def mark(
        self,
        event_id: str,
        status: WebhookProcessingStatus,
        error_message: str | None = None,
    ) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE billing_webhook_events
                   SET status = %s,
                       error_message = %s,
                       processed_at = CASE WHEN %s THEN now() ELSE NULL END
                   WHERE id = %s""",
                (
                    status.value,
                    error_message,
                    status == WebhookProcessingStatus.PROCESSED,
                    event_id,
                ),
            )


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisWebhookEventStore:
    """Redis-backed ledger. Requires a persistent Redis (AOF/RDB) in production.

    Unlike cache-style dedup, errors propagate: failing open here would let
    a replay apply twice.
    """

    KEY_PREFIX = "webhook:event"

    def __init__(self, redis_url: str | None = None, client: redis.Redis | None = None):
        if client is None:
            if not redis_url:
                raise ValueError("redis_url or client is required")
            client = redis.from_url(redis_url, decode_responses=True)
        self._redis = client

    def _key(self, event_id: str) -> str:
        return f"{self.KEY_PREFIX}:{PROVIDER_NAME}:{event_id}"

    def record_received(self, event: ProviderEvent) -> bool:
        key = self._key(event.id)
        was_set = self._redis.set(key, WebhookProcessingStatus.RECEIVED.value, nx=True)
        if not was_set:
            logger.info("Duplicate webhook event: %s", event.id)
            return False
        self._redis.hset(
            f"{key}:meta",
            mapping={
                "event_type": event.event,
                "payload": json.dumps(event.model_dump(mode="json")),
            },
        )
        return True

    def mark(
        self,
        event_id: str,
        status: WebhookProcessingStatus,
        error_message: str | None = None,
    ) -> None:
        key = self._key(event_id)
        self._redis.set(key, status.value)
        self._redis.hset(f"{key}:meta", mapping={"error_message": error_message or ""})

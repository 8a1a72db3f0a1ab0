"""Tests for provider event parsing and the ledger-backed applier."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from billing_gateway.billing.applier import ApplyResult, WebhookEventApplier, build_event_store
from billing_gateway.billing.event_store import (
    PostgresWebhookEventStore,
    RedisWebhookEventStore,
    WebhookProcessingStatus,
)
from billing_gateway.billing.events import (
    CheckoutOutcome,
    InvalidEventPayload,
    infer_checkout_outcome,
    parse_event,
)
from billing_gateway.config import WebhookSettings


# ── Parsing ───────────────────────────────────────────────────────────────


class TestParseEvent:
    def test_minimal_event(self):
        event = parse_event({"id": "evt_1", "event": "billing.paid"})
        assert event.id == "evt_1"
        assert event.data == {}

    def test_extra_fields_kept(self):
        event = parse_event({"id": "evt_1", "event": "billing.paid", "devMode": True})
        assert event.model_dump()["devMode"] is True

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            "billing.paid",
            None,
            {},
            {"id": "evt_1"},
            {"event": "billing.paid"},
            {"id": "", "event": "billing.paid"},
            {"id": "   ", "event": "billing.paid"},
            {"id": 123, "event": "billing.paid"},
        ],
    )
    def test_invalid_payloads(self, payload):
        with pytest.raises(InvalidEventPayload):
            parse_event(payload)

    def test_id_and_event_kept_verbatim(self):
        event = parse_event({"id": " evt_1 ", "event": "billing.paid "})
        assert event.id == " evt_1 "
        assert event.event == "billing.paid "

    def test_non_object_data_treated_as_empty(self):
        event = parse_event({"id": "evt_1", "event": "x", "data": "oops"})
        assert event.data == {}


class TestInferOutcome:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("billing.paid", CheckoutOutcome.PAID),
            ("billing.failed", CheckoutOutcome.FAILED),
            ("billing.expired", CheckoutOutcome.EXPIRED),
            ("subscription.expired", CheckoutOutcome.EXPIRED),
            ("billing.chargeback", CheckoutOutcome.CHARGEBACK),
            ("billing.refunded", CheckoutOutcome.CHARGEBACK),
        ],
    )
    def test_event_name(self, name, expected):
        assert infer_checkout_outcome(parse_event({"id": "e", "event": name})) == expected

    def test_event_name_wins_over_status(self):
        event = parse_event({"id": "e", "event": "billing.failed", "data": {"billing": {"status": "PAID"}}})
        assert infer_checkout_outcome(event) == CheckoutOutcome.FAILED

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("PAID", CheckoutOutcome.PAID),
            ("EXPIRED", CheckoutOutcome.EXPIRED),
            ("CANCELLED", CheckoutOutcome.FAILED),
            ("REFUNDED", CheckoutOutcome.CHARGEBACK),
        ],
    )
    def test_billing_status(self, status, expected):
        event = parse_event({"id": "e", "event": "billing.updated", "data": {"billing": {"status": status}}})
        assert infer_checkout_outcome(event) == expected

    def test_transaction_status(self):
        event = parse_event(
            {"id": "e", "event": "transaction.updated", "data": {"transaction": {"status": "COMPLETE"}}}
        )
        assert infer_checkout_outcome(event) == CheckoutOutcome.PAID

    def test_billing_status_before_transaction(self):
        event = parse_event(
            {
                "id": "e",
                "event": "x",
                "data": {"billing": {"status": "EXPIRED"}, "transaction": {"status": "COMPLETE"}},
            }
        )
        assert infer_checkout_outcome(event) == CheckoutOutcome.EXPIRED

    def test_unknown_event(self):
        assert infer_checkout_outcome(parse_event({"id": "e", "event": "customer.created"})) is None

    def test_pending_status_is_no_outcome(self):
        event = parse_event({"id": "e", "event": "x", "data": {"billing": {"status": "PENDING"}}})
        assert infer_checkout_outcome(event) is None


# ── Applier ───────────────────────────────────────────────────────────────


class TestWebhookEventApplier:
    def test_processed(self, event_store):
        handler = MagicMock(return_value=True)
        applier = WebhookEventApplier(event_store, handler)
        result = applier.apply_verified_event({"id": "evt_1", "event": "billing.paid"})
        assert result == ApplyResult(duplicate=False, processed=True)
        assert event_store.statuses["evt_1"] == WebhookProcessingStatus.PROCESSED
        event, outcome = handler.call_args[0]
        assert event.id == "evt_1"
        assert outcome == CheckoutOutcome.PAID

    def test_duplicate_has_no_side_effects(self, event_store):
        handler = MagicMock(return_value=True)
        applier = WebhookEventApplier(event_store, handler)
        applier.apply_verified_event({"id": "evt_1", "event": "billing.paid"})
        result = applier.apply_verified_event({"id": "evt_1", "event": "billing.paid"})
        assert result == ApplyResult(duplicate=True, processed=False)
        handler.assert_called_once()

    def test_replay_with_different_body_still_duplicate(self, event_store):
        """Idempotency is keyed by provider event id only."""
        handler = MagicMock(return_value=True)
        applier = WebhookEventApplier(event_store, handler)
        applier.apply_verified_event({"id": "evt_1", "event": "billing.paid"})
        result = applier.apply_verified_event({"id": "evt_1", "event": "billing.refunded"})
        assert result.duplicate is True
        handler.assert_called_once()

    def test_ids_differing_in_whitespace_are_distinct(self, event_store):
        handler = MagicMock(return_value=True)
        applier = WebhookEventApplier(event_store, handler)
        first = applier.apply_verified_event({"id": "evt_1", "event": "billing.paid"})
        second = applier.apply_verified_event({"id": " evt_1 ", "event": "billing.paid"})
        assert first.duplicate is False
        assert second.duplicate is False
        assert handler.call_count == 2

    def test_no_outcome_ignored(self, event_store):
        handler = MagicMock()
        applier = WebhookEventApplier(event_store, handler)
        result = applier.apply_verified_event({"id": "evt_2", "event": "customer.created"})
        assert result == ApplyResult(duplicate=False, processed=False)
        assert event_store.statuses["evt_2"] == WebhookProcessingStatus.IGNORED
        handler.assert_not_called()

    def test_unmatched_checkout_ignored(self, event_store):
        applier = WebhookEventApplier(event_store, MagicMock(return_value=False))
        result = applier.apply_verified_event({"id": "evt_3", "event": "billing.paid"})
        assert result.processed is False
        assert event_store.statuses["evt_3"] == WebhookProcessingStatus.IGNORED
        assert event_store.errors["evt_3"] == "No checkout found for the received event"

    def test_handler_failure_marked_and_raised(self, event_store):
        applier = WebhookEventApplier(event_store, MagicMock(side_effect=RuntimeError("amount mismatch")))
        with pytest.raises(RuntimeError):
            applier.apply_verified_event({"id": "evt_4", "event": "billing.paid"})
        assert event_store.statuses["evt_4"] == WebhookProcessingStatus.FAILED
        assert event_store.errors["evt_4"] == "amount mismatch"

    def test_failed_event_replay_is_duplicate(self, event_store):
        """A recorded id is never applied again, even after a failure."""
        handler = MagicMock(side_effect=[RuntimeError("boom"), True])
        applier = WebhookEventApplier(event_store, handler)
        with pytest.raises(RuntimeError):
            applier.apply_verified_event({"id": "evt_5", "event": "billing.paid"})
        assert applier.apply_verified_event({"id": "evt_5", "event": "billing.paid"}).duplicate is True

    def test_invalid_payload_not_recorded(self, event_store):
        applier = WebhookEventApplier(event_store, MagicMock())
        with pytest.raises(InvalidEventPayload):
            applier.apply_verified_event({"event": "billing.paid"})
        assert event_store.events == {}


class TestBuildEventStore:
    def test_postgres_default(self):
        assert isinstance(build_event_store(WebhookSettings()), PostgresWebhookEventStore)

    def test_redis(self):
        store = build_event_store(WebhookSettings(event_store="redis", redis_url="redis://localhost:6399/0"))
        assert isinstance(store, RedisWebhookEventStore)

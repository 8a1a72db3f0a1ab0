"""Provider webhook event payloads and checkout outcome inference.

Only ``id`` and ``event`` are required; everything under ``data`` is
optional and read defensively, since providers add fields freely.
"""

from __future__ import annotations

import enum
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class InvalidEventPayload(ValueError):
    """Parsed JSON is not a provider event (not an object, or no id/event)."""


class CheckoutOutcome(str, enum.Enum):
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    CHARGEBACK = "CHARGEBACK"


class ProviderEvent(BaseModel):
    """A verified billing event as sent by the payment provider."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    event: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", "event")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("data", mode="before")
    @classmethod
    def _data_or_empty(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    def section(self, name: str) -> dict[str, Any]:
        """``data[name]`` if it is an object, else {}."""
        value = self.data.get(name)
        return value if isinstance(value, dict) else {}


def parse_event(payload: Any) -> ProviderEvent:
    """Validate a parsed JSON body as a provider event.

    Raises:
        InvalidEventPayload: not an object, or ``id``/``event`` missing
    """
    if not isinstance(payload, dict):
        raise InvalidEventPayload("webhook payload is not a JSON object")
    try:
        return ProviderEvent.model_validate(payload)
    except ValidationError as e:
        raise InvalidEventPayload(f"webhook payload missing id or event ({e.error_count()} errors)") from e


_EVENT_OUTCOMES: dict[str, CheckoutOutcome] = {
    "billing.paid": CheckoutOutcome.PAID,
    "billing.failed": CheckoutOutcome.FAILED,
    "billing.expired": CheckoutOutcome.EXPIRED,
    "subscription.expired": CheckoutOutcome.EXPIRED,
    "billing.chargeback": CheckoutOutcome.CHARGEBACK,
    "billing.refunded": CheckoutOutcome.CHARGEBACK,
}

_BILLING_STATUS_OUTCOMES: dict[str, CheckoutOutcome] = {
    "PAID": CheckoutOutcome.PAID,
    "EXPIRED": CheckoutOutcome.EXPIRED,
    "CANCELLED": CheckoutOutcome.FAILED,
    "REFUNDED": CheckoutOutcome.CHARGEBACK,
}

_TRANSACTION_STATUS_OUTCOMES: dict[str, CheckoutOutcome] = {
    "COMPLETE": CheckoutOutcome.PAID,
    "CANCELLED": CheckoutOutcome.FAILED,
    "REFUNDED": CheckoutOutcome.CHARGEBACK,
}


def infer_checkout_outcome(event: ProviderEvent) -> CheckoutOutcome | None:
    """Event name first, then billing status, then transaction status."""
    outcome = _EVENT_OUTCOMES.get(event.event)
    if outcome:
        return outcome

    billing_status = event.section("billing").get("status")
    if isinstance(billing_status, str) and billing_status in _BILLING_STATUS_OUTCOMES:
        return _BILLING_STATUS_OUTCOMES[billing_status]

    transaction_status = event.section("transaction").get("status")
    if isinstance(transaction_status, str) and transaction_status in _TRANSACTION_STATUS_OUTCOMES:
        return _TRANSACTION_STATUS_OUTCOMES[transaction_status]

    return None

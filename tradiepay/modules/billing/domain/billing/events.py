"""Decoding of verified Stripe payloads into internal events."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional

import structlog

from tradiepay.shared.core.exceptions import WebhookPayloadError

from .signature import TrustDomain, VerifiedPayload

logger = structlog.get_logger()

CENTS = Decimal("0.01")


class EventKind(str, Enum):
    """Stripe event types this service acts on."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"

    @classmethod
    def parse(cls, event_type: str | None) -> Optional["EventKind"]:
        try:
            return cls(event_type)
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class InboundEvent:
    event_id: str
    event_type: str
    kind: Optional[EventKind]
    trust_domain: TrustDomain
    payload: dict[str, Any] = field(default_factory=dict)
    account: Optional[str] = None
    livemode: bool = False

    @property
    def metadata(self) -> dict[str, Any]:
        metadata = self.payload.get("metadata")
        return metadata if isinstance(metadata, dict) else {}


def minor_units_to_amount(minor_units: Any) -> Decimal:
    """Convert a Stripe minor-unit integer (cents) into a 2dp Decimal amount."""
    if minor_units is None:
        return Decimal("0.00")
    try:
        value = Decimal(str(minor_units))
    except ArithmeticError as exc:
        raise WebhookPayloadError("Invalid amount") from exc
    if not value.is_finite() or value < 0:
        raise WebhookPayloadError("Invalid amount")
    return (value / 100).quantize(CENTS, rounding=ROUND_HALF_UP)


def decode_event(verified: VerifiedPayload) -> InboundEvent:
    """Parse the verified body once into an InboundEvent."""
    try:
        raw = json.loads(verified.body)
    except json.JSONDecodeError:
        logger.error("stripe_webhook_invalid_json", payload_len=len(verified.body))
        raise WebhookPayloadError("Invalid JSON payload")

    if not isinstance(raw, dict):
        raise WebhookPayloadError("Invalid JSON payload")

    event_type = str(raw.get("type") or "")
    data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
    obj = data.get("object") if isinstance(data.get("object"), dict) else {}

    return InboundEvent(
        event_id=str(raw.get("id") or ""),
        event_type=event_type,
        kind=EventKind.parse(event_type),
        trust_domain=verified.trust_domain,
        payload=obj,
        account=raw.get("account"),
        livemode=bool(raw.get("livemode", False)),
    )

"""Helpers for building signed Stripe deliveries in tests."""
import hashlib
import hmac
import json
import time
from typing import Any, Optional
from uuid import uuid4

PLATFORM_SECRET = "whsec_platform_test_secret"
CONNECT_SECRET = "whsec_connect_test_secret"


def generate_stripe_signature(body: str, secret: str, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header value (`t=...,v1=...`) for the body under the secret."""
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(
        secret.encode("utf-8"),
        f"{ts}.{body}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={ts},v1={digest}"


def stripe_event(event_type: str, obj: dict[str, Any], event_id: Optional[str] = None, **extra: Any) -> str:
    """Serialized Stripe event envelope."""
    payload = {
        "id": event_id or f"evt_{uuid4().hex}",
        "object": "event",
        "type": event_type,
        "livemode": False,
        "data": {"object": obj},
    }
    payload.update(extra)
    return json.dumps(payload)


def checkout_completed(invoice_id: Any, amount_total: int, event_id: Optional[str] = None) -> str:
    return stripe_event(
        "checkout.session.completed",
        {
            "id": f"cs_test_{uuid4().hex[:12]}",
            "object": "checkout.session",
            "amount_total": amount_total,
            "currency": "aud",
            "metadata": {"invoice_id": str(invoice_id)},
        },
        event_id=event_id,
        account="acct_test_business",
    )


def signed_headers(body: str, secret: str = CONNECT_SECRET) -> dict[str, str]:
    return {
        "stripe-signature": generate_stripe_signature(body, secret),
        "content-type": "application/json",
    }

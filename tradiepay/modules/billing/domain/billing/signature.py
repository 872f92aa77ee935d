"""Stripe webhook authentication across platform and connected-account trust domains."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

import stripe
import structlog

from tradiepay.shared.core.config import Settings
from tradiepay.shared.core.exceptions import WebhookSignatureError

logger = structlog.get_logger()

SIGNATURE_HEADER = "stripe-signature"


class TrustDomain(str, Enum):
    """Logical origin of a webhook, identified by the secret that verified it."""

    PLATFORM = "platform"
    CONNECTED_ACCOUNT = "connected_account"


# Secrets are tried in this order and the first match wins.
TRUST_DOMAIN_ORDER: tuple[TrustDomain, ...] = (
    TrustDomain.PLATFORM,
    TrustDomain.CONNECTED_ACCOUNT,
)


@dataclass(frozen=True, slots=True)
class WebhookSecret:
    domain: TrustDomain
    secret: str = ""

    def __repr__(self) -> str:
        return f"WebhookSecret(domain={self.domain.value!r}, secret='***')"


@dataclass(frozen=True, slots=True)
class VerifiedPayload:
    body: str
    trust_domain: TrustDomain


def build_webhook_secrets(settings: Settings) -> list[WebhookSecret]:
    """Configured secrets in TRUST_DOMAIN_ORDER, skipping unset ones."""
    configured = {
        TrustDomain.PLATFORM: settings.STRIPE_WEBHOOK_SECRET,
        TrustDomain.CONNECTED_ACCOUNT: settings.STRIPE_CONNECT_WEBHOOK_SECRET,
    }
    return [
        WebhookSecret(domain=domain, secret=configured[domain])
        for domain in TRUST_DOMAIN_ORDER
        if configured[domain]
    ]


class SignatureVerifier:
    """
    Authenticates a raw delivery against an ordered list of trust secrets.

    Verification is a pure function of the body bytes, the header and the
    configured secrets. A wrong secret and a malformed header are treated
    the same way: the next candidate is tried.
    """

    def __init__(self, secrets: Iterable[WebhookSecret], tolerance_seconds: int = 300):
        self.secrets: Sequence[WebhookSecret] = sorted(
            secrets, key=lambda s: TRUST_DOMAIN_ORDER.index(s.domain)
        )
        self.tolerance_seconds = tolerance_seconds

    def verify(self, payload: bytes, signature: str | None) -> VerifiedPayload:
        if not signature:
            logger.warning("stripe_webhook_missing_signature", payload_len=len(payload))
            raise WebhookSignatureError("No signature")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("stripe_webhook_payload_not_utf8", payload_len=len(payload))
            raise WebhookSignatureError("Invalid signature")

        for candidate in self.secrets:
            try:
                stripe.WebhookSignature.verify_header(
                    body, signature, candidate.secret, self.tolerance_seconds
                )
            except stripe.SignatureVerificationError:
                continue

            logger.info(
                "stripe_webhook_verified", trust_domain=candidate.domain.value
            )
            return VerifiedPayload(body=body, trust_domain=candidate.domain)

        logger.warning(
            "stripe_webhook_invalid_signature",
            domains_tried=[s.domain.value for s in self.secrets],
            payload_len=len(payload),
        )
        raise WebhookSignatureError("Invalid signature")

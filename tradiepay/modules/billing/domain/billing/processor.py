"""Routes decoded Stripe events to the engine that owns them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, cast

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradiepay.shared.core.config import Settings
from tradiepay.shared.core.exceptions import ConfigurationError
from tradiepay.shared.db.session import get_session_maker

from .events import EventKind, InboundEvent, minor_units_to_amount
from .invoice_settlement import InvoiceSettlementEngine, SettlementOutcome
from .notifications import NotificationChannel, NotificationDispatcher
from .signature import SignatureVerifier, TrustDomain, build_webhook_secrets
from .stripe_client import PaymentProviderClient, StripePaymentProvider
from .subscription_lifecycle import SubscriptionLifecycleEngine, SubscriptionChange

logger = structlog.get_logger()

SUBSCRIPTION_KINDS = frozenset(
    {
        EventKind.SUBSCRIPTION_CREATED,
        EventKind.SUBSCRIPTION_UPDATED,
        EventKind.SUBSCRIPTION_DELETED,
        EventKind.INVOICE_PAID,
        EventKind.INVOICE_PAYMENT_SUCCEEDED,
    }
)


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    event_type: str
    handled: bool
    settlement: Optional[SettlementOutcome] = None
    subscription: Optional[SubscriptionChange] = None


class WebhookProcessor:
    """Dispatches each event to exactly one handler; unknown kinds are accepted and ignored."""

    def __init__(
        self,
        settlement: InvoiceSettlementEngine,
        subscriptions: SubscriptionLifecycleEngine,
    ):
        self.settlement = settlement
        self.subscriptions = subscriptions

    async def process(self, event: InboundEvent) -> ProcessingResult:
        if event.kind == EventKind.CHECKOUT_COMPLETED:
            outcome = await self.settlement.settle(event)
            return ProcessingResult(event.event_type, handled=True, settlement=outcome)

        if event.kind == EventKind.PAYMENT_INTENT_SUCCEEDED:
            logger.info(
                "payment_intent_succeeded",
                payment_intent_id=event.payload.get("id"),
                amount=str(minor_units_to_amount(event.payload.get("amount"))),
            )
            return ProcessingResult(event.event_type, handled=True)

        if event.kind in SUBSCRIPTION_KINDS:
            # Platform plans are billed on the platform account only.
            if event.trust_domain is not TrustDomain.PLATFORM:
                logger.warning(
                    "subscription_event_wrong_trust_domain",
                    event_type=event.event_type,
                    account=event.account,
                )
                return ProcessingResult(event.event_type, handled=False)
            change = await self.subscriptions.apply(event)
            return ProcessingResult(event.event_type, handled=True, subscription=change)

        logger.info("stripe_webhook_unhandled_event", event_type=event.event_type)
        return ProcessingResult(event.event_type, handled=False)


@dataclass(slots=True)
class WebhookDependencies:
    """Everything the webhook endpoint needs, built once from configuration."""

    verifier: SignatureVerifier
    processor: WebhookProcessor
    notifier: NotificationDispatcher


def build_webhook_dependencies(
    settings: Settings,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    provider: Optional[PaymentProviderClient] = None,
) -> WebhookDependencies:
    missing = settings.missing_webhook_config()
    if missing:
        logger.error("webhook_configuration_missing", missing=missing)
        raise ConfigurationError(details={"missing": missing})

    session_maker = session_maker or get_session_maker()

    api_key = cast(str, settings.STRIPE_SECRET_KEY)
    provider = provider or StripePaymentProvider(
        api_key,
        api_version=settings.STRIPE_API_VERSION,
        max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
    )
    attempts = settings.OPTIMISTIC_WRITE_MAX_ATTEMPTS
    return WebhookDependencies(
        verifier=SignatureVerifier(
            build_webhook_secrets(settings),
            tolerance_seconds=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        ),
        processor=WebhookProcessor(
            settlement=InvoiceSettlementEngine(session_maker, max_attempts=attempts),
            subscriptions=SubscriptionLifecycleEngine(
                session_maker,
                provider,
                price_tier_map=settings.price_tier_map,
                max_attempts=attempts,
            ),
        ),
        notifier=NotificationDispatcher(NotificationChannel.from_settings(settings), session_maker),
    )

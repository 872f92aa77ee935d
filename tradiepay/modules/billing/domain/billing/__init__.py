"""Payment-event reconciliation: verification, routing, settlement and subscriptions."""

from tradiepay.modules.billing.domain.billing.events import EventKind, InboundEvent, decode_event
from tradiepay.modules.billing.domain.billing.invoice_settlement import (
    InvoiceSettlementEngine,
    SettlementOutcome,
)
from tradiepay.modules.billing.domain.billing.notifications import (
    NotificationChannel,
    NotificationDispatcher,
)
from tradiepay.modules.billing.domain.billing.processor import (
    WebhookDependencies,
    WebhookProcessor,
    build_webhook_dependencies,
)
from tradiepay.modules.billing.domain.billing.signature import (
    TRUST_DOMAIN_ORDER,
    SignatureVerifier,
    TrustDomain,
    WebhookSecret,
)
from tradiepay.modules.billing.domain.billing.subscription_lifecycle import (
    SubscriptionLifecycleEngine,
)

__all__ = [
    "EventKind",
    "InboundEvent",
    "decode_event",
    "InvoiceSettlementEngine",
    "SettlementOutcome",
    "NotificationChannel",
    "NotificationDispatcher",
    "WebhookDependencies",
    "WebhookProcessor",
    "build_webhook_dependencies",
    "TRUST_DOMAIN_ORDER",
    "SignatureVerifier",
    "TrustDomain",
    "WebhookSecret",
    "SubscriptionLifecycleEngine",
]

from tradiepay.modules.billing.api.v1.webhooks import router, get_webhook_dependencies
from tradiepay.modules.billing.domain.billing import (
    SignatureVerifier,
    WebhookDependencies,
    WebhookProcessor,
)

__all__ = [
    "router",
    "get_webhook_dependencies",
    "SignatureVerifier",
    "WebhookDependencies",
    "WebhookProcessor",
]

"""Thin async wrapper over the Stripe SDK for the calls the webhook engines need."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol

import stripe
import structlog

from tradiepay.shared.core.exceptions import ExternalAPIError
from tradiepay.shared.core.retry import tenacity_retry

logger = structlog.get_logger()


class PaymentProviderClient(Protocol):
    async def retrieve_subscription(self, subscription_id: str) -> Optional[dict[str, Any]]:
        """Current subscription object, or None if the provider has no such subscription."""
        ...


def _as_plain(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    if isinstance(value, dict):
        return {k: _as_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_as_plain(v) for v in value]
    return value


class StripePaymentProvider:
    """
    Stripe-backed PaymentProviderClient.

    The SDK client is constructed from explicit configuration; the global
    `stripe.api_key` is never touched.
    """

    def __init__(
        self,
        api_key: str,
        *,
        api_version: Optional[str] = None,
        max_network_retries: int = 2,
        client: Optional[stripe.StripeClient] = None,
    ):
        self._client = client or stripe.StripeClient(
            api_key,
            stripe_version=api_version,
            max_network_retries=max_network_retries,
        )

    @tenacity_retry("external_api")
    async def retrieve_subscription(self, subscription_id: str) -> Optional[dict[str, Any]]:
        try:
            subscription = await asyncio.to_thread(
                self._client.subscriptions.retrieve, subscription_id
            )
        except stripe.InvalidRequestError as exc:
            logger.warning(
                "stripe_subscription_not_found",
                subscription_id=subscription_id,
                error=str(exc),
            )
            return None
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise ExternalAPIError(
                "Stripe unavailable", details={"subscription_id": subscription_id}
            ) from exc
        except stripe.StripeError as exc:
            logger.error(
                "stripe_subscription_fetch_failed",
                subscription_id=subscription_id,
                error=str(exc),
            )
            raise ExternalAPIError(
                "Failed to fetch subscription",
                code="stripe_error",
                details={"subscription_id": subscription_id},
            ) from exc

        return _as_plain(subscription)

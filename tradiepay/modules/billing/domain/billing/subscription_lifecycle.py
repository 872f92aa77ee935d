"""Platform subscription state machine over the profile record."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradiepay.models.profile import FREE_TIER, Profile
from tradiepay.shared.core.exceptions import PersistenceError, StaleWriteError
from tradiepay.shared.core.retry import RetryManager

from .events import EventKind, InboundEvent
from .stripe_client import PaymentProviderClient
from .webhook_events import is_processed, record_processed

logger = structlog.get_logger()

PROVIDER_TAG = "stripe"
DEFAULT_PAID_TIER = "solo"
ACTIVE_STATUS = "active"
# Stripe never reactivates a subscription from these statuses.
TERMINAL_STATUSES = frozenset({"canceled", "unpaid", "incomplete_expired"})


@dataclass(frozen=True, slots=True)
class SubscriptionChange:
    user_id: UUID
    subscription_tier: str
    subscription_provider: Optional[str]
    subscription_id: Optional[str]
    subscription_expires_at: Optional[datetime]


def resolve_tier(subscription: Mapping[str, Any], price_tier_map: Mapping[str, str]) -> str:
    """Tier from metadata, then from the first item's price, then the baseline paid tier."""
    metadata = subscription.get("metadata") or {}
    tier = metadata.get("tier_id") or metadata.get("tier")
    if tier:
        return str(tier).strip().lower()

    items = (subscription.get("items") or {}).get("data") or []
    if items:
        price_id = (items[0].get("price") or {}).get("id")
        if price_id and price_id in price_tier_map:
            return price_tier_map[price_id]
    return DEFAULT_PAID_TIER


def current_period_end(subscription: Mapping[str, Any]) -> Optional[datetime]:
    """Billing period end; newer API versions carry it on the subscription items."""
    period_end = subscription.get("current_period_end")
    if period_end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            period_end = items[0].get("current_period_end")
    if period_end is None:
        return None
    return datetime.fromtimestamp(int(period_end), tz=timezone.utc)


def subscription_id_from_invoice(invoice: Mapping[str, Any]) -> Optional[str]:
    subscription = invoice.get("subscription")
    if isinstance(subscription, Mapping):
        subscription = subscription.get("id")
    if not subscription:
        parent = invoice.get("parent") or {}
        details = parent.get("subscription_details") or {}
        subscription = details.get("subscription")
    return str(subscription) if subscription else None


def _user_id_from(subscription: Mapping[str, Any]) -> Optional[UUID]:
    metadata = subscription.get("metadata") or {}
    raw = metadata.get("user_id")
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        logger.warning("subscription_invalid_user_id", user_id=str(raw))
        return None


class SubscriptionLifecycleEngine:
    """
    Drives the profile's plan fields from subscription events.

    created/updated (active) and recurring payments set the active plan;
    deletion or a terminal status resets to free. Anything else is a logged
    no-op.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        provider: PaymentProviderClient,
        price_tier_map: Optional[Mapping[str, str]] = None,
        max_attempts: int = 3,
    ):
        self.session_maker = session_maker
        self.provider = provider
        self.price_tier_map = dict(price_tier_map or {})
        self.max_attempts = max_attempts

    async def apply(self, event: InboundEvent) -> Optional[SubscriptionChange]:
        if event.kind in (EventKind.SUBSCRIPTION_CREATED, EventKind.SUBSCRIPTION_UPDATED):
            return await self._activate(event, event.payload)
        if event.kind == EventKind.SUBSCRIPTION_DELETED:
            return await self._cancel(event, event.payload)
        if event.kind in (EventKind.INVOICE_PAID, EventKind.INVOICE_PAYMENT_SUCCEEDED):
            return await self._renew(event)
        logger.info("subscription_event_not_handled", event_type=event.event_type)
        return None

    async def _activate(
        self, event: InboundEvent, subscription: Mapping[str, Any]
    ) -> Optional[SubscriptionChange]:
        status = subscription.get("status")
        if status in TERMINAL_STATUSES:
            logger.info(
                "subscription_terminal_status",
                subscription_id=subscription.get("id"),
                status=status,
            )
            return await self._cancel(event, subscription)
        if status != ACTIVE_STATUS:
            logger.info(
                "subscription_not_active_ignored",
                subscription_id=subscription.get("id"),
                status=status,
            )
            return None

        user_id = _user_id_from(subscription)
        if user_id is None:
            logger.info("subscription_missing_user_id", subscription_id=subscription.get("id"))
            return None

        change = SubscriptionChange(
            user_id=user_id,
            subscription_tier=resolve_tier(subscription, self.price_tier_map),
            subscription_provider=PROVIDER_TAG,
            subscription_id=str(subscription.get("id")),
            subscription_expires_at=current_period_end(subscription),
        )
        return await self._write(event, change)

    async def _cancel(
        self, event: InboundEvent, subscription: Mapping[str, Any]
    ) -> Optional[SubscriptionChange]:
        user_id = _user_id_from(subscription)
        if user_id is None:
            logger.info("subscription_missing_user_id", subscription_id=subscription.get("id"))
            return None

        change = SubscriptionChange(
            user_id=user_id,
            subscription_tier=FREE_TIER,
            subscription_provider=None,
            subscription_id=None,
            subscription_expires_at=None,
        )
        return await self._write(event, change, cancelled_id=str(subscription.get("id")))

    async def _renew(self, event: InboundEvent) -> Optional[SubscriptionChange]:
        subscription_id = subscription_id_from_invoice(event.payload)
        if not subscription_id:
            logger.info("invoice_paid_without_subscription", invoice_id=event.payload.get("id"))
            return None

        subscription = await self.provider.retrieve_subscription(subscription_id)
        if subscription is None:
            return None

        logger.info("subscription_renewal_fetched", subscription_id=subscription_id)
        return await self._activate(event, subscription)

    async def _write(
        self,
        event: InboundEvent,
        change: SubscriptionChange,
        cancelled_id: Optional[str] = None,
    ) -> Optional[SubscriptionChange]:
        retry = RetryManager("optimistic_write", max_attempts=self.max_attempts)
        try:
            return await retry.execute_with_retry(self._write_once, event, change, cancelled_id)
        except StaleWriteError as exc:
            raise PersistenceError("Failed to update profile") from exc

    async def _write_once(
        self,
        event: InboundEvent,
        change: SubscriptionChange,
        cancelled_id: Optional[str],
    ) -> Optional[SubscriptionChange]:
        async with self.session_maker() as session:
            try:
                async with session.begin():
                    if await is_processed(session, event.event_id):
                        logger.info("stripe_webhook_duplicate_ignored", event_id=event.event_id)
                        return None

                    profile = (
                        await session.execute(
                            select(Profile).where(Profile.user_id == change.user_id)
                        )
                    ).scalar_one_or_none()
                    if profile is None:
                        logger.warning("subscription_profile_not_found", user_id=str(change.user_id))
                        return None

                    # A late deletion of an old subscription must not wipe a newer one.
                    if cancelled_id and profile.subscription_id not in (None, cancelled_id):
                        logger.info(
                            "subscription_delete_for_replaced_subscription_ignored",
                            user_id=str(change.user_id),
                            cancelled_id=cancelled_id,
                        )
                        return None

                    observed_version = profile.version
                    result = await session.execute(
                        update(Profile)
                        .where(
                            Profile.user_id == change.user_id,
                            Profile.version == observed_version,
                        )
                        .values(
                            subscription_tier=change.subscription_tier,
                            subscription_provider=change.subscription_provider,
                            subscription_id=change.subscription_id,
                            subscription_expires_at=change.subscription_expires_at,
                            version=observed_version + 1,
                            updated_at=datetime.now(timezone.utc),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise StaleWriteError(
                            "Profile changed concurrently",
                            details={"user_id": str(change.user_id), "version": observed_version},
                        )

                    await record_processed(session, event)
            except IntegrityError:
                logger.info("stripe_webhook_duplicate_race_ignored", event_id=event.event_id)
                return None
            except StaleWriteError:
                raise
            except SQLAlchemyError as exc:
                logger.error(
                    "profile_update_failed",
                    user_id=str(change.user_id),
                    error=str(exc),
                    exc_info=True,
                )
                raise PersistenceError("Failed to update profile") from exc

        logger.info(
            "subscription_profile_updated",
            user_id=str(change.user_id),
            tier=change.subscription_tier,
            subscription_id=change.subscription_id,
            expires_at=change.subscription_expires_at.isoformat()
            if change.subscription_expires_at
            else None,
        )
        return change

"""
Processed Webhook Event Ledger

Stripe delivers webhooks at least once. Every state-changing event records
its provider event ID in `webhook_events` inside the transaction that applies
it, so a redelivery is detected and skipped instead of being applied twice.

Usage:
    async with session.begin():
        if await is_processed(session, event.event_id):
            return
        ...apply change...
        await record_processed(session, event)

    # periodic maintenance
    deleted = await cleanup_old_events(session, retention_days=90)
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradiepay.models.webhook_event import ProcessedWebhookEvent

from .events import InboundEvent

logger = structlog.get_logger()

RESULT_SUCCESS = "success"


async def is_processed(session: AsyncSession, event_id: Optional[str]) -> bool:
    """Check if the event ID was already applied."""
    if not event_id:
        return False
    result = await session.execute(
        select(ProcessedWebhookEvent.id).where(
            ProcessedWebhookEvent.event_id == event_id
        )
    )
    return result.scalar_one_or_none() is not None


async def record_processed(session: AsyncSession, event: InboundEvent) -> None:
    """
    Record the event inside the caller's transaction.

    Flushes immediately so a concurrent delivery of the same event surfaces
    as an IntegrityError here rather than at commit.
    """
    if not event.event_id:
        logger.warning("webhook_event_missing_id", event_type=event.event_type)
        return
    session.add(
        ProcessedWebhookEvent(
            event_id=event.event_id,
            event_type=event.event_type,
            source=event.trust_domain.value,
            processing_result=RESULT_SUCCESS,
        )
    )
    await session.flush()


async def cleanup_old_events(session: AsyncSession, retention_days: int = 90) -> int:
    """Delete ledger rows older than the retention window. Returns rows deleted."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
    result = await session.execute(
        delete(ProcessedWebhookEvent).where(ProcessedWebhookEvent.processed_at < cutoff)
    )
    await session.commit()
    deleted = int(result.rowcount or 0)
    logger.info("webhook_events_cleaned_up", deleted=deleted, retention_days=retention_days)
    return deleted

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from tradiepay.models.webhook_event import ProcessedWebhookEvent
from tradiepay.modules.billing.domain.billing.events import decode_event
from tradiepay.modules.billing.domain.billing.signature import TrustDomain, VerifiedPayload
from tradiepay.modules.billing.domain.billing.webhook_events import (
    cleanup_old_events,
    is_processed,
    record_processed,
)
from tests.utils import stripe_event


def _event(event_id: str):
    body = stripe_event("invoice.paid", {"id": "in_1"}, event_id=event_id)
    return decode_event(VerifiedPayload(body=body, trust_domain=TrustDomain.PLATFORM))


async def test_record_then_is_processed(db):
    assert await is_processed(db, "evt_ledger_1") is False

    await record_processed(db, _event("evt_ledger_1"))
    await db.commit()

    assert await is_processed(db, "evt_ledger_1") is True
    row = (
        await db.execute(
            select(ProcessedWebhookEvent).where(ProcessedWebhookEvent.event_id == "evt_ledger_1")
        )
    ).scalar_one()
    assert row.event_type == "invoice.paid"
    assert row.source == "platform"
    assert row.processing_result == "success"


async def test_empty_event_id_is_never_processed(db):
    assert await is_processed(db, "") is False
    assert await is_processed(db, None) is False


async def test_second_record_of_same_event_violates_unique_constraint(session_maker):
    async with session_maker() as session:
        await record_processed(session, _event("evt_twice"))
        await session.commit()

    async with session_maker() as session:
        with pytest.raises(IntegrityError):
            await record_processed(session, _event("evt_twice"))


async def test_cleanup_removes_only_expired_rows(db):
    now = datetime.now(timezone.utc)
    db.add_all(
        [
            ProcessedWebhookEvent(
                event_id="evt_old", event_type="invoice.paid", source="platform",
                processed_at=now - timedelta(days=120),
            ),
            ProcessedWebhookEvent(
                event_id="evt_recent", event_type="invoice.paid", source="platform",
                processed_at=now - timedelta(days=5),
            ),
        ]
    )
    await db.commit()

    deleted = await cleanup_old_events(db, retention_days=90)

    assert deleted == 1
    assert await is_processed(db, "evt_old") is False
    assert await is_processed(db, "evt_recent") is True

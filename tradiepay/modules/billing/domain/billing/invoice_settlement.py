"""Applies checkout-completed payments to an invoice's running ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradiepay.models.invoice import Invoice, InvoiceStatus
from tradiepay.shared.core.exceptions import (
    PersistenceError,
    ResourceNotFoundError,
    StaleWriteError,
)
from tradiepay.shared.core.retry import RetryManager

from .events import InboundEvent, minor_units_to_amount
from .webhook_events import is_processed, record_processed

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class SettlementOutcome:
    invoice_id: UUID
    invoice_number: str
    user_id: UUID
    client_id: Optional[UUID]
    settled_amount: Decimal
    amount_paid: Decimal
    total: Decimal
    status: str
    paid_at: Optional[datetime]


@dataclass(frozen=True, slots=True)
class LedgerUpdate:
    amount_paid: Decimal
    status: str
    paid_at: Optional[datetime]


def compute_ledger_update(
    *,
    total: Decimal,
    amount_paid: Decimal,
    current_status: str,
    paid_at: Optional[datetime],
    settled_amount: Decimal,
    now: datetime,
) -> LedgerUpdate:
    """
    Accumulate a settlement and derive the resulting status.

    `paid_at` is set only on the transition into paid and is never cleared.
    A zero running total leaves the status as it was.
    """
    new_amount_paid = (amount_paid or Decimal("0")) + settled_amount

    if new_amount_paid >= total:
        status = InvoiceStatus.PAID.value
        new_paid_at = paid_at or now
    elif new_amount_paid > 0:
        status = InvoiceStatus.PARTIALLY_PAID.value
        new_paid_at = paid_at
    else:
        status = current_status
        new_paid_at = paid_at

    return LedgerUpdate(amount_paid=new_amount_paid, status=status, paid_at=new_paid_at)


class InvoiceSettlementEngine:
    """
    Applies one checkout-completed event to exactly one invoice.

    The read and the version-guarded write happen in one transaction along
    with the processed-event record. A concurrent writer bumping the version
    first makes the write match no row; the whole attempt is rolled back and
    retried against fresh values.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        max_attempts: int = 3,
    ):
        self.session_maker = session_maker
        self.max_attempts = max_attempts

    async def settle(self, event: InboundEvent) -> Optional[SettlementOutcome]:
        invoice_ref = event.metadata.get("invoice_id")
        if not invoice_ref:
            logger.info("checkout_session_missing_invoice_id", session_id=event.payload.get("id"))
            return None

        try:
            invoice_id = UUID(str(invoice_ref))
        except ValueError:
            logger.warning("checkout_session_invalid_invoice_id", invoice_id=str(invoice_ref))
            raise ResourceNotFoundError("Invoice not found")

        settled_amount = minor_units_to_amount(event.payload.get("amount_total"))

        retry = RetryManager("optimistic_write", max_attempts=self.max_attempts)
        try:
            return await retry.execute_with_retry(
                self._apply_once, event, invoice_id, settled_amount
            )
        except StaleWriteError as exc:
            raise PersistenceError("Failed to update invoice") from exc

    async def _apply_once(
        self, event: InboundEvent, invoice_id: UUID, settled_amount: Decimal
    ) -> Optional[SettlementOutcome]:
        async with self.session_maker() as session:
            try:
                async with session.begin():
                    if await is_processed(session, event.event_id):
                        logger.info(
                            "stripe_webhook_duplicate_ignored",
                            event_id=event.event_id,
                            invoice_id=str(invoice_id),
                        )
                        return None

                    invoice = (
                        await session.execute(select(Invoice).where(Invoice.id == invoice_id))
                    ).scalar_one_or_none()
                    if invoice is None:
                        logger.error("invoice_not_found", invoice_id=str(invoice_id))
                        raise ResourceNotFoundError("Invoice not found")

                    observed_version = invoice.version
                    ledger = compute_ledger_update(
                        total=invoice.total,
                        amount_paid=invoice.amount_paid,
                        current_status=invoice.status,
                        paid_at=invoice.paid_at,
                        settled_amount=settled_amount,
                        now=datetime.now(timezone.utc),
                    )
                    if (
                        invoice.status == InvoiceStatus.PAID.value
                        and ledger.status != InvoiceStatus.PAID.value
                    ):
                        logger.warning(
                            "invoice_paid_status_regressed",
                            invoice_id=str(invoice_id),
                            total=str(invoice.total),
                            amount_paid=str(ledger.amount_paid),
                        )

                    result = await session.execute(
                        update(Invoice)
                        .where(Invoice.id == invoice_id, Invoice.version == observed_version)
                        .values(
                            amount_paid=ledger.amount_paid,
                            status=ledger.status,
                            paid_at=ledger.paid_at,
                            version=observed_version + 1,
                            updated_at=datetime.now(timezone.utc),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise StaleWriteError(
                            "Invoice changed concurrently",
                            details={"invoice_id": str(invoice_id), "version": observed_version},
                        )

                    await record_processed(session, event)

                    outcome = SettlementOutcome(
                        invoice_id=invoice.id,
                        invoice_number=invoice.invoice_number,
                        user_id=invoice.user_id,
                        client_id=invoice.client_id,
                        settled_amount=settled_amount,
                        amount_paid=ledger.amount_paid,
                        total=invoice.total,
                        status=ledger.status,
                        paid_at=ledger.paid_at,
                    )
            except IntegrityError:
                # Another delivery of this event committed first.
                logger.info(
                    "stripe_webhook_duplicate_race_ignored",
                    event_id=event.event_id,
                    invoice_id=str(invoice_id),
                )
                return None
            except (ResourceNotFoundError, StaleWriteError):
                raise
            except SQLAlchemyError as exc:
                logger.error(
                    "invoice_update_failed",
                    invoice_id=str(invoice_id),
                    error=str(exc),
                    exc_info=True,
                )
                raise PersistenceError("Failed to update invoice") from exc

        logger.info(
            "invoice_settled",
            invoice_id=str(outcome.invoice_id),
            status=outcome.status,
            amount_paid=str(outcome.amount_paid),
            settled_amount=str(settled_amount),
        )
        return outcome

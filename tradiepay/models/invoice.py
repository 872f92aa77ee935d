from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Uuid as PG_UUID,
)
from sqlalchemy.orm import Mapped, mapped_column

from tradiepay.shared.db.base import Base


class InvoiceStatus(str, Enum):
    """Invoice statuses. This service only ever writes PARTIALLY_PAID and PAID."""

    DRAFT = "draft"
    SENT = "sent"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"


class Client(Base):
    """A business's customer. Read-only here; used to address settlement emails."""

    __tablename__ = "clients"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Invoice(Base):
    """
    Invoice payment ledger.

    `amount_paid` is a running total; `version` is bumped on every settlement
    write so concurrent deliveries for the same invoice cannot lose updates.
    """

    __tablename__ = "invoices"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(), nullable=False, index=True)
    client_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(),
        ForeignKey("clients.id", ondelete="SET NULL"),
        nullable=True,
    )
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False)

    total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=InvoiceStatus.DRAFT.value, index=True
    )
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

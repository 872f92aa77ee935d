from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import DateTime, String, Uuid as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from tradiepay.shared.db.base import Base


class ProcessedWebhookEvent(Base):
    """
    Ledger of provider event IDs that have been applied.

    Written in the same transaction as the state change it guards, so a
    redelivered event either finds its row or wins the unique constraint.
    """

    __tablename__ = "webhook_events"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    # Trust domain that authenticated the delivery
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    processing_result: Mapped[str] = mapped_column(
        String(16), nullable=False, default="success"
    )
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Integer, String, Uuid as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from tradiepay.shared.db.base import Base

FREE_TIER = "free"


class Profile(Base):
    """
    Account profile carrying the platform subscription plan.
    Mutated here only by subscription lifecycle events.
    """

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(), nullable=False, unique=True, index=True
    )
    email: Mapped[Optional[str]] = mapped_column(String(255))
    business_name: Mapped[Optional[str]] = mapped_column(String(255))

    subscription_tier: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FREE_TIER
    )
    subscription_provider: Mapped[Optional[str]] = mapped_column(String(32))
    subscription_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    subscription_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

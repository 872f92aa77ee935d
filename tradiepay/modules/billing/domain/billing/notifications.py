"""
Best-effort settlement notifications.

The email channel is resolved once at startup. A disabled channel turns
dispatch into a no-op; an enabled one posts to the Resend API under its own
timeout. Nothing raised here ever reaches the webhook response.
"""

from __future__ import annotations

import asyncio
import html
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradiepay.models.invoice import Client, InvoiceStatus
from tradiepay.models.profile import Profile
from tradiepay.shared.core.config import Settings
from tradiepay.shared.core.http import get_http_client

from .invoice_settlement import SettlementOutcome

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class EmailConfig:
    api_key: str
    sender: str
    api_url: str
    timeout_seconds: float

    def __repr__(self) -> str:
        return f"EmailConfig(sender={self.sender!r}, api_url={self.api_url!r}, api_key='***')"


@dataclass(frozen=True, slots=True)
class NotificationChannel:
    """Either enabled with an EmailConfig or disabled."""

    email: Optional[EmailConfig] = None

    @property
    def enabled(self) -> bool:
        return self.email is not None

    @classmethod
    def disabled(cls) -> "NotificationChannel":
        return cls(email=None)

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationChannel":
        if not settings.RESEND_API_KEY:
            logger.info("notification_channel_disabled", reason="RESEND_API_KEY not set")
            return cls.disabled()
        return cls(
            email=EmailConfig(
                api_key=settings.RESEND_API_KEY,
                sender=settings.NOTIFICATION_FROM_EMAIL,
                api_url=settings.RESEND_API_URL,
                timeout_seconds=settings.NOTIFICATION_TIMEOUT_SECONDS,
            )
        )


def _money(amount: Decimal) -> str:
    return f"${amount:,.2f}"


def compose_settlement_email(
    outcome: SettlementOutcome, client_name: str, business_name: Optional[str]
) -> tuple[str, str]:
    """Subject and HTML body summarising client, invoice number, amount and status."""
    if outcome.status == InvoiceStatus.PAID.value:
        status_line = "Paid in full"
    else:
        balance = max(outcome.total - outcome.amount_paid, Decimal("0"))
        status_line = f"Partially paid ({_money(balance)} outstanding)"

    subject = f"Payment received: Invoice {outcome.invoice_number}"
    body = (
        f"<h2>Payment received</h2>"
        f"<p>{html.escape(business_name or 'Your business')} received a payment.</p>"
        f"<ul>"
        f"<li><strong>Client:</strong> {html.escape(client_name)}</li>"
        f"<li><strong>Invoice:</strong> {html.escape(outcome.invoice_number)}</li>"
        f"<li><strong>Amount:</strong> {_money(outcome.settled_amount)}</li>"
        f"<li><strong>Total paid:</strong> {_money(outcome.amount_paid)} of {_money(outcome.total)}</li>"
        f"<li><strong>Status:</strong> {status_line}</li>"
        f"</ul>"
    )
    return subject, body


class NotificationDispatcher:
    def __init__(
        self,
        channel: NotificationChannel,
        session_maker: async_sessionmaker[AsyncSession],
        http_client: Callable[[], httpx.AsyncClient] = get_http_client,
    ):
        self.channel = channel
        self.session_maker = session_maker
        self.http_client = http_client

    async def invoice_settled(self, outcome: SettlementOutcome) -> bool:
        """Email the business owner. Returns True if the email was accepted."""
        if self.channel.email is None:
            logger.debug("notification_skipped_channel_disabled", invoice_id=str(outcome.invoice_id))
            return False

        try:
            return await asyncio.wait_for(
                self._send_invoice_settled(self.channel.email, outcome),
                timeout=self.channel.email.timeout_seconds,
            )
        except Exception as exc:  # noqa: BLE001 - notifications never fail a settlement
            logger.warning(
                "invoice_settlement_notification_failed",
                invoice_id=str(outcome.invoice_id),
                error=str(exc) or type(exc).__name__,
            )
            return False

    async def _send_invoice_settled(self, email: EmailConfig, outcome: SettlementOutcome) -> bool:
        async with self.session_maker() as session:
            owner = (
                await session.execute(select(Profile).where(Profile.user_id == outcome.user_id))
            ).scalar_one_or_none()
            client = None
            if outcome.client_id is not None:
                client = (
                    await session.execute(select(Client).where(Client.id == outcome.client_id))
                ).scalar_one_or_none()

        if owner is None or not owner.email:
            logger.info("notification_skipped_no_owner_email", invoice_id=str(outcome.invoice_id))
            return False

        subject, body = compose_settlement_email(
            outcome,
            client_name=client.name if client else "Unknown client",
            business_name=owner.business_name,
        )
        response = await self.http_client().post(
            email.api_url,
            json={"from": email.sender, "to": [owner.email], "subject": subject, "html": body},
            headers={"Authorization": f"Bearer {email.api_key}"},
        )
        response.raise_for_status()
        logger.info(
            "invoice_settlement_notification_sent",
            invoice_id=str(outcome.invoice_id),
            status=outcome.status,
        )
        return True

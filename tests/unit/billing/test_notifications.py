import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest
import respx

from tradiepay.modules.billing.domain.billing.invoice_settlement import SettlementOutcome
from tradiepay.modules.billing.domain.billing.notifications import (
    EmailConfig,
    NotificationChannel,
    NotificationDispatcher,
    compose_settlement_email,
)
from tradiepay.shared.core.config import Settings

RESEND_URL = "https://api.resend.test/emails"


def _outcome(user_id, client_id, status="paid", amount_paid="1100.00", settled="1100.00") -> SettlementOutcome:
    return SettlementOutcome(
        invoice_id=uuid4(),
        invoice_number="INV-0042",
        user_id=user_id,
        client_id=client_id,
        settled_amount=Decimal(settled),
        amount_paid=Decimal(amount_paid),
        total=Decimal("1100.00"),
        status=status,
        paid_at=datetime.now(timezone.utc) if status == "paid" else None,
    )


def _channel(timeout: float = 5.0) -> NotificationChannel:
    return NotificationChannel(
        email=EmailConfig(
            api_key="re_test_key",
            sender="TradieMate <notifications@tradiemate.test>",
            api_url=RESEND_URL,
            timeout_seconds=timeout,
        )
    )


class TestNotificationChannel:
    def test_disabled_without_api_key(self):
        channel = NotificationChannel.from_settings(Settings(TESTING=True, RESEND_API_KEY=None))
        assert channel.enabled is False

    def test_enabled_with_api_key(self):
        channel = NotificationChannel.from_settings(
            Settings(TESTING=True, RESEND_API_KEY="re_live", NOTIFICATION_TIMEOUT_SECONDS=2.5)
        )
        assert channel.enabled is True
        assert channel.email.timeout_seconds == 2.5

    def test_email_config_repr_is_masked(self):
        assert "re_test_key" not in repr(_channel().email)


class TestComposeSettlementEmail:
    def test_paid_in_full(self):
        subject, body = compose_settlement_email(_outcome(uuid4(), None), "Bondi Plumbing Co", "Sparky Sam")

        assert subject == "Payment received: Invoice INV-0042"
        assert "Bondi Plumbing Co" in body
        assert "$1,100.00" in body
        assert "Paid in full" in body

    def test_partially_paid_shows_outstanding(self):
        outcome = _outcome(uuid4(), None, status="partially_paid", amount_paid="500.00", settled="500.00")

        _, body = compose_settlement_email(outcome, "Bondi Plumbing Co", None)

        assert "Partially paid ($600.00 outstanding)" in body
        assert "Your business" in body

    def test_client_name_is_escaped(self):
        _, body = compose_settlement_email(_outcome(uuid4(), None), "<script>x</script>", "Biz")
        assert "<script>" not in body


class TestNotificationDispatcher:
    async def test_disabled_channel_is_noop(self, session_maker):
        dispatcher = NotificationDispatcher(NotificationChannel.disabled(), session_maker)

        assert await dispatcher.invoice_settled(_outcome(uuid4(), None)) is False

    @respx.mock
    async def test_sends_email_to_business_owner(self, session_maker, profile_factory, client_record, owner_id):
        await profile_factory(email="owner@tradie.example")
        route = respx.post(RESEND_URL).mock(return_value=httpx.Response(200, json={"id": "email_1"}))

        async with httpx.AsyncClient() as http:
            dispatcher = NotificationDispatcher(_channel(), session_maker, http_client=lambda: http)
            sent = await dispatcher.invoice_settled(_outcome(owner_id, client_record.id))

        assert sent is True
        assert route.called
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer re_test_key"
        payload = json.loads(request.content)
        assert payload["to"] == ["owner@tradie.example"]
        assert payload["subject"] == "Payment received: Invoice INV-0042"
        assert client_record.name in payload["html"]

    @respx.mock
    async def test_skips_when_owner_has_no_email(self, session_maker, profile_factory, owner_id):
        await profile_factory(email=None)
        route = respx.post(RESEND_URL).mock(return_value=httpx.Response(200))

        async with httpx.AsyncClient() as http:
            dispatcher = NotificationDispatcher(_channel(), session_maker, http_client=lambda: http)
            sent = await dispatcher.invoice_settled(_outcome(owner_id, None))

        assert sent is False
        assert not route.called

    @respx.mock
    async def test_provider_error_is_swallowed(self, session_maker, profile_factory, owner_id):
        await profile_factory()
        respx.post(RESEND_URL).mock(return_value=httpx.Response(500, json={"message": "boom"}))

        async with httpx.AsyncClient() as http:
            dispatcher = NotificationDispatcher(_channel(), session_maker, http_client=lambda: http)
            sent = await dispatcher.invoice_settled(_outcome(owner_id, None))

        assert sent is False

    async def test_timeout_is_swallowed(self, session_maker, profile_factory, owner_id):
        await profile_factory()

        class SlowClient:
            async def post(self, *args, **kwargs):
                await asyncio.sleep(1)

        dispatcher = NotificationDispatcher(_channel(timeout=0.01), session_maker, http_client=SlowClient)

        assert await dispatcher.invoice_settled(_outcome(owner_id, None)) is False

    @pytest.mark.parametrize("error", [RuntimeError("smtp down"), httpx.ConnectError("refused")])
    async def test_any_exception_is_swallowed(self, session_maker, profile_factory, owner_id, error):
        await profile_factory()

        class BrokenClient:
            async def post(self, *args, **kwargs):
                raise error

        dispatcher = NotificationDispatcher(_channel(), session_maker, http_client=BrokenClient)

        assert await dispatcher.invoice_settled(_outcome(owner_id, None)) is False

"""
Global pytest fixtures for the TradiePay webhook test suite.

Provides:
- Async SQLite database (temporary file) with all tables created
- Seeded invoices, clients and profiles
- A fake payment provider for subscription re-fetches
- The FastAPI app wired to test dependencies, and an httpx client for it
"""
import os

# Set test environment BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_tradiepay"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_platform_test_secret"
os.environ["STRIPE_CONNECT_WEBHOOK_SECRET"] = "whsec_connect_test_secret"
os.environ.pop("RESEND_API_KEY", None)

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from tests.utils import PLATFORM_SECRET, CONNECT_SECRET

# Import all models to register them in SQLAlchemy mapper globally for all tests
import tradiepay.models  # noqa: F401, E402


class FakePaymentProvider:
    """In-memory PaymentProviderClient keyed by subscription ID."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []

    async def retrieve_subscription(self, subscription_id: str) -> Optional[dict[str, Any]]:
        self.calls.append(subscription_id)
        return self.subscriptions.get(subscription_id)


@pytest.fixture
def test_settings():
    from tradiepay.shared.core.config import Settings

    return Settings(
        TESTING=True,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        STRIPE_SECRET_KEY="sk_test_tradiepay",
        STRIPE_WEBHOOK_SECRET=PLATFORM_SECRET,
        STRIPE_CONNECT_WEBHOOK_SECRET=CONNECT_SECRET,
        STRIPE_PRICE_ID_CREW="price_crew_monthly",
        STRIPE_PRICE_ID_PRO_ANNUAL="price_pro_annual",
        RESEND_API_KEY=None,
    )


@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """Create async SQLite engine for testing using a temporary file."""
    from sqlalchemy.ext.asyncio import create_async_engine
    from tradiepay.shared.db.base import Base

    db_url = f"sqlite+aiosqlite:///{tmp_path / f'test_{uuid4().hex}.sqlite'}"
    engine = create_async_engine(db_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator:
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()


@pytest_asyncio.fixture
async def client_record(session_maker, owner_id):
    from tradiepay.models.invoice import Client

    client = Client(id=uuid4(), user_id=owner_id, name="Bondi Plumbing Co", email="accounts@bondi.example")
    async with session_maker() as session:
        session.add(client)
        await session.commit()
    return client


@pytest.fixture
def invoice_factory(session_maker, owner_id, client_record):
    """Persist an invoice and return it."""
    from tradiepay.models.invoice import Invoice, InvoiceStatus

    async def _create(
        total: str = "1100.00",
        amount_paid: str = "0",
        status: str = InvoiceStatus.SENT.value,
        paid_at: Optional[datetime] = None,
    ) -> Invoice:
        invoice = Invoice(
            id=uuid4(),
            user_id=owner_id,
            client_id=client_record.id,
            invoice_number=f"INV-{uuid4().hex[:6].upper()}",
            total=Decimal(total),
            amount_paid=Decimal(amount_paid),
            status=status,
            paid_at=paid_at,
        )
        async with session_maker() as session:
            session.add(invoice)
            await session.commit()
        return invoice

    return _create


@pytest.fixture
def profile_factory(session_maker, owner_id):
    """Persist the owner's profile and return it."""
    from tradiepay.models.profile import FREE_TIER, Profile

    async def _create(
        subscription_tier: str = FREE_TIER,
        subscription_id: Optional[str] = None,
        subscription_expires_at: Optional[datetime] = None,
        email: Optional[str] = "owner@tradie.example",
    ) -> Profile:
        profile = Profile(
            id=uuid4(),
            user_id=owner_id,
            email=email,
            business_name="Sparky Sam Electrical",
            subscription_tier=subscription_tier,
            subscription_provider="stripe" if subscription_id else None,
            subscription_id=subscription_id,
            subscription_expires_at=subscription_expires_at,
        )
        async with session_maker() as session:
            session.add(profile)
            await session.commit()
        return profile

    return _create


@pytest.fixture
def fake_provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def webhook_deps(test_settings, session_maker, fake_provider):
    from tradiepay.modules.billing.domain.billing.processor import build_webhook_dependencies

    return build_webhook_dependencies(
        test_settings, session_maker=session_maker, provider=fake_provider
    )


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================

@pytest.fixture
def app(webhook_deps):
    """The real TradiePay app with webhook dependencies overridden."""
    from tradiepay.main import app as tradiepay_app
    from tradiepay.modules.billing.api.v1.webhooks import get_webhook_dependencies

    tradiepay_app.dependency_overrides[get_webhook_dependencies] = lambda: webhook_deps
    yield tradiepay_app
    tradiepay_app.dependency_overrides.pop(get_webhook_dependencies, None)


@pytest_asyncio.fixture
async def ac(app) -> AsyncGenerator:
    from httpx import ASGITransport, AsyncClient

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)

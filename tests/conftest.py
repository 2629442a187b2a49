"""
Pytest configuration and fixtures for testing
"""
import asyncio
import json
from collections import defaultdict
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config.settings import Settings
from crud.memory_storage import MemoryStorage
from database import Base
from main import create_app
from services.errors import GatewayError, WebhookSignatureError
from services.gateway import CustomerRef, OneOffCharge, PaymentGateway, RecurringCharge
from services.membership_service import MembershipService

# In-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_SIGNATURE = "t=1,v1=test-signature"


class FakeGateway(PaymentGateway):
    """
    Records every call instead of talking to Stripe.
    Set fail_with to make the next charge raise a GatewayError.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.customers: Dict[str, CustomerRef] = {}
        self.fail_with: Optional[str] = None
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_test_{self._counter}"

    def _maybe_fail(self):
        if self.fail_with:
            raise GatewayError(self.fail_with)

    @property
    def charge_calls(self) -> List[tuple]:
        return [call for call in self.calls if call[0] in ("recurring", "one_off")]

    async def find_or_create_customer(self, email: str, name: str) -> CustomerRef:
        self.calls.append(("customer", email, name))
        self._maybe_fail()
        if email not in self.customers:
            self.customers[email] = CustomerRef(id=self._next_id("cus"), email=email)
        return self.customers[email]

    async def create_recurring_charge(
        self, customer_id, plan_name, plan_description, amount_minor_units, currency, interval
    ) -> RecurringCharge:
        self.calls.append(("recurring", customer_id, plan_name, amount_minor_units, currency, interval))
        self._maybe_fail()
        subscription_id = self._next_id("sub")
        return RecurringCharge(
            subscription_id=subscription_id,
            client_secret=f"{subscription_id}_secret",
            status="incomplete",
        )

    async def create_one_off_charge(self, amount_minor_units, currency, metadata=None) -> OneOffCharge:
        self.calls.append(("one_off", amount_minor_units, currency, metadata))
        self._maybe_fail()
        intent_id = self._next_id("pi")
        return OneOffCharge(payment_intent_id=intent_id, client_secret=f"{intent_id}_secret")

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Any:
        if signature != TEST_SIGNATURE:
            raise WebhookSignatureError("Webhook Error: No signatures found matching the expected signature")
        return json.loads(payload)


@pytest.fixture
def storage():
    """Fresh in-memory storage per test"""
    return MemoryStorage()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def service(storage, gateway):
    # Own lock registry so locks never outlive the test event loop
    return MembershipService(storage, gateway, currency="usd", locks=defaultdict(asyncio.Lock))


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        STRIPE_SECRET_KEY="sk_test_dummy",
        STRIPE_WEBHOOK_SECRET="whsec_dummy",
        LOGS_DIR=tmp_path / "logs",
        RATE_LIMIT_PER_MINUTE=1000,
    )


@pytest.fixture
def client(test_settings, storage, gateway):
    """FastAPI TestClient over a fresh app with in-memory storage and the fake gateway"""
    app = create_app(config=test_settings, storage=storage, gateway=gateway)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def test_db():
    """
    Fixture that provides an isolated, in-memory SQLite database connection for each test.

    This fixture:
    - Creates all tables before the test runs
    - Yields a clean AsyncSession for the test
    - Disposes of the engine (and the database with it) after the test completes
    """
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        # One shared connection, otherwise each connection sees its own empty database
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    await test_engine.dispose()

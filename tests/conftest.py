"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- A fake M-Pesa provider that records pushes instead of calling Daraja
- Test data factories
"""
# Settings are read at import time: configure before importing insureme
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("WEBHOOK_RATE_LIMIT_MAX_REQUESTS", "10000")

import pytest
from decimal import Decimal
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from insureme.core.circuit_breaker import CircuitBreaker
from insureme.db.database import Base, get_db, get_sessionmaker
from insureme.db.models.plan import Plan
from insureme.db.models.policy import Policy
from insureme.db.models.user import User
from insureme.db.seed import seed_default_plans
from insureme.domain.services.mpesa import (
    PushResult,
    QueryStatus,
    StatusQueryResult,
    get_payment_provider,
    reset_providers,
)
from insureme.domain.services.mpesa.daraja_provider import DarajaProvider
from insureme.domain.services.policy_service import PolicyService
from insureme.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def reset_singletons():
    """Circuit breakers and the provider are process-wide"""
    CircuitBreaker.reset_all()
    reset_providers()
    yield
    CircuitBreaker.reset_all()
    reset_providers()


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def plans(db_session: AsyncSession) -> list[Plan]:
    """The default catalog: Basic, Standard, Comprehensive"""
    await seed_default_plans(db_session)
    return await PolicyService(db_session).list_plans()


# ============================================================================
# Fake M-Pesa provider
# ============================================================================

class FakePaymentProvider(DarajaProvider):
    """
    Records STK pushes and status queries instead of sending them.

    Callback validation and interpretation are the real Daraja ones.
    """

    def __init__(self) -> None:
        super().__init__(
            CircuitBreaker("fake-mpesa"),
            base_url="https://mpesa.test",
            consumer_key="key",
            consumer_secret="secret",
            shortcode="174379",
            passkey="passkey",
            callback_url="https://insureme.test/api/payments/mpesa/callback",
        )
        self.pushes: list[dict] = []
        self.next_result = PushResult(
            success=True,
            checkout_request_id="ws_CO_TEST",
            merchant_request_id="29115-34620561-1",
            response_description="Success. Request accepted for processing",
        )
        self.next_error: Exception | None = None
        self.queries: list[str] = []
        self.next_status = StatusQueryResult(
            checkout_request_id="ws_CO_TEST",
            status=QueryStatus.PENDING,
            result_description="The transaction is being processed",
        )

    async def push(self, phone, amount, reference, description) -> PushResult:
        self.pushes.append({
            "phone": phone,
            "amount": Decimal(str(amount)),
            "reference": reference,
            "description": description,
        })
        if self.next_error is not None:
            raise self.next_error
        result = self.next_result
        if result.success and result.checkout_request_id == "ws_CO_TEST":
            # unique per push so the column's unique constraint holds
            result = PushResult(
                success=True,
                checkout_request_id=f"ws_CO_TEST_{len(self.pushes)}",
                merchant_request_id=result.merchant_request_id,
                response_description=result.response_description,
            )
        return result

    async def query_status(self, checkout_request_id: str) -> StatusQueryResult:
        self.queries.append(checkout_request_id)
        if self.next_error is not None:
            raise self.next_error
        return self.next_status


@pytest.fixture
def fake_provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, session_factory, fake_provider):
    """Create test client with database and provider overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sessionmaker] = lambda: session_factory
    app.dependency_overrides[get_payment_provider] = lambda: fake_provider

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    async def _create_user(
        phone_number: str = "+254712345678",
        name: str | None = "Jane Wanjiku",
        occupation: str | None = "Employed",
    ) -> User:
        user = User(phone_number=phone_number, name=name, occupation=occupation)
        db_session.add(user)
        await db_session.commit()
        return user

    return _create_user


@pytest.fixture
def policy_factory(db_session: AsyncSession):
    """Factory for buying a policy through the service"""
    async def _create_policy(user: User, plan: Plan, premium: str = "150") -> Policy:
        return await PolicyService(db_session).create_policy(user, plan, Decimal(premium))

    return _create_policy


def _stk_callback(
    checkout_request_id: str,
    result_code: int = 0,
    receipt: str = "NLJ7RT61SV",
    amount: float = 150.0,
    phone: int = 254712345678,
) -> dict:
    """Daraja STK push result envelope"""
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": (
            "The service request is processed successfully."
            if result_code == 0 else "Request cancelled by user"
        ),
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20191219102115},
                {"Name": "PhoneNumber", "Value": phone},
            ]
        }
    return {"Body": {"stkCallback": callback}}


@pytest.fixture
def stk_callback():
    """Builder for Daraja STK callback bodies"""
    return _stk_callback

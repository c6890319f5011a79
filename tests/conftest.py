"""Shared fixtures: in-memory database, controllable clock and a recording gateway."""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite://")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.clock import FixedClock
from app.core.immutability import register_immutability_enforcement
from app.database import Base
from app.domain.payout_state import PayoutStatus
from app.gateways.base import (
    GatewayType,
    PayoutGateway,
    RefundResult,
    ReversalResult,
    TransferResult,
)
from app.models.booking import Booking
from app.models.mentor import Mentor
from app.services.fraud_service import FraudService
from app.services.payout_service import PayoutService
from app.services.trust_service import TrustLedger

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class FakeGateway(PayoutGateway):
    """Records transfers; can be told to fail or to run a hook mid-transfer."""

    def __init__(self):
        self.transfers: list[dict] = []
        self.fail_with: str | None = None
        self.raise_exc: Exception | None = None
        self.on_transfer: Callable[[dict], Awaitable[None]] | None = None

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.MANUAL

    async def create_transfer(
        self,
        destination_account: str,
        amount: int,
        currency: str,
        reference_id: str,
        description: str,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> TransferResult:
        call = {
            "destination_account": destination_account,
            "amount": amount,
            "currency": currency,
            "reference_id": reference_id,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        }
        if self.on_transfer:
            await self.on_transfer(call)
        if self.raise_exc:
            raise self.raise_exc
        if self.fail_with:
            return TransferResult(success=False, error_message=self.fail_with)

        self.transfers.append(call)
        return TransferResult(success=True, transfer_id=f"tr_test_{len(self.transfers)}")

    async def reverse_transfer(self, transfer_id: str, amount: int | None = None) -> ReversalResult:
        return ReversalResult(success=True, reversal_id=f"trr_{transfer_id}")

    async def process_refund(self, payment_intent_id: str, amount: int, reason: str) -> RefundResult:
        return RefundResult(success=True, refund_id=f"re_{payment_intent_id}")


@pytest.fixture(scope="session", autouse=True)
def _immutable_audit_trail():
    register_immutability_enforcement()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def ledger(clock) -> TrustLedger:
    return TrustLedger(threshold=5, clock=clock)


@pytest.fixture
def payouts(gateway, clock, ledger) -> PayoutService:
    return PayoutService(gateway=gateway, clock=clock, ledger=ledger, hold_days=7, claim_timeout_seconds=600)


@pytest.fixture
def fraud(clock) -> FraudService:
    return FraudService(deactivation_threshold=2, clock=clock)


@pytest.fixture
def make_mentor(db):
    async def _make(**overrides) -> Mentor:
        values = {
            "display_name": "Ada Mentor",
            "stripe_connect_id": f"acct_{uuid.uuid4().hex[:16]}",
            "stripe_onboarded": True,
            "verified_bookings_count": 0,
            "is_trusted": False,
            "is_active": True,
        }
        values.update(overrides)
        mentor = Mentor(**values)
        db.add(mentor)
        await db.commit()
        return mentor

    return _make


@pytest.fixture
def make_booking(db):
    async def _make(mentor: Mentor, **overrides) -> Booking:
        values = {
            "mentor_id": mentor.id,
            "student_id": uuid.uuid4(),
            "total_price": 10000,
            "currency": "usd",
            "paid_at": NOW - timedelta(days=1),
            "student_confirmed_at": NOW - timedelta(hours=1),
            "auto_confirm_at": NOW + timedelta(hours=72),
            "is_verified": False,
            "is_fraud_reported": False,
            "payout_status": PayoutStatus.NONE,
        }
        values.update(overrides)
        booking = Booking(**values)
        db.add(booking)
        await db.commit()
        return booking

    return _make


"""
Shared test fixtures.

Every test gets its own file-backed SQLite database (via aiosqlite) so the
suite runs without PostgreSQL or Redis.  A file rather than ``:memory:``
lets concurrent sessions use separate connections, so the seat-race tests
contend on real database locks.

Payment rails run in ``simulate`` mode; tests that need a rail to hang,
raise or decline on demand register a :class:`StubStrategy`.
"""

import asyncio
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from rideshare.config import (
    DomesticCardSettings,
    PaymentSettings,
    PayPalSettings,
    StripeSettings,
)
from rideshare.infrastructure.database import Base
from rideshare.infrastructure.models import BookingModel  # noqa: F401  (registers tables)
from rideshare.payments.base import (
    PaymentRequest,
    PaymentResult,
    PaymentStrategy,
    RefundRequest,
)
from rideshare.payments.cash import CashStrategy
from rideshare.payments.cib import CIBStrategy
from rideshare.payments.router import PaymentRouter
from rideshare.security.encryption import EncryptionService
from rideshare.services.booking import BookingOrchestrator
from rideshare.services.inventory import TripInventoryManager

TEST_MASTER_KEY = "test-master-key-not-for-production"
DRIVER_ID = "driver-1"

# Luhn-valid test numbers
CIB_APPROVED = "1234 5678 9012 3452"
CIB_DECLINED = "4539 1488 0343 6467"
EDAHABIA_APPROVED = "5555 5555 5555 4444"


class StubStrategy(PaymentStrategy):
    """Scriptable rail: succeeds by default, or hangs / raises / declines."""

    def __init__(
        self,
        method: str = "stub",
        *,
        result: Optional[PaymentResult] = None,
        refund_result: Optional[PaymentResult] = None,
        delay: float = 0.0,
        refund_delay: float = 0.0,
        error: Optional[BaseException] = None,
    ):
        self.method = method
        self.result = result
        self.refund_result = refund_result
        self.delay = delay
        self.refund_delay = refund_delay
        self.error = error
        self.started = asyncio.Event()
        self.refund_started = asyncio.Event()
        self.calls: list[PaymentRequest] = []
        self.refunds: list[RefundRequest] = []

    async def process(self, request: PaymentRequest) -> PaymentResult:
        self.calls.append(request)
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        return PaymentResult(
            success=True,
            status="succeeded",
            transaction_id=f"stub_{len(self.calls)}",
            amount=request.amount,
            currency=request.currency,
            method=self.method,
        )

    async def refund(self, request: RefundRequest) -> PaymentResult:
        self.refunds.append(request)
        self.refund_started.set()
        if self.refund_delay:
            await asyncio.sleep(self.refund_delay)
        if self.refund_result is not None:
            return self.refund_result
        return PaymentResult(
            success=True,
            status="refunded",
            transaction_id="stub_refund",
            amount=request.amount,
            currency=request.currency,
            method=self.method,
        )

    def get_name(self) -> str:
        return "Stub"

    def get_description(self) -> str:
        return "Scriptable test rail"

    def requires_online(self) -> bool:
        return True

    def supports_recurring(self) -> bool:
        return False

    def get_supported_currencies(self) -> tuple[str, ...]:
        return ("DZD", "EUR")


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Services ──────────────────────────────────────────────────────────


@pytest.fixture
def encryption() -> EncryptionService:
    return EncryptionService(TEST_MASTER_KEY)


@pytest.fixture
def payment_settings() -> PaymentSettings:
    return PaymentSettings(
        cib=DomesticCardSettings(simulate=True),
        edahabia=DomesticCardSettings(simulate=True),
        stripe=StripeSettings(simulate=True, webhook_secret="whsec_test"),
        paypal=PayPalSettings(simulate=True),
        timeout_seconds=5.0,
    )


@pytest.fixture
def router(payment_settings) -> PaymentRouter:
    return PaymentRouter.from_settings(payment_settings)


@pytest.fixture
def orchestrator(session_factory, router, encryption) -> BookingOrchestrator:
    return BookingOrchestrator(session_factory, router, encryption)


@pytest.fixture
def make_orchestrator(session_factory, encryption):
    """Orchestrator over cash + simulated CIB + the given stub rails."""

    def _make(*stubs: StubStrategy, payment_timeout: float = 5.0, **kwargs):
        strategies = {
            "cash": CashStrategy(),
            "cib": CIBStrategy(DomesticCardSettings(simulate=True)),
        }
        strategies.update({stub.method: stub for stub in stubs})
        kwargs.setdefault("encryption", encryption)
        return BookingOrchestrator(
            session_factory,
            PaymentRouter(strategies, timeout_seconds=payment_timeout),
            kwargs.pop("encryption"),
            payment_timeout=payment_timeout,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_trip(session_factory):
    async def _make(
        total_seats: int = 3,
        price_per_seat: Decimal = Decimal("1000.00"),
        driver_id: str = DRIVER_ID,
    ) -> str:
        async with session_factory.begin() as session:
            trip = await TripInventoryManager(session).create_trip(
                driver_id=driver_id,
                total_seats=total_seats,
                price_per_seat=price_per_seat,
                from_city="Alger",
                to_city="Oran",
            )
            return trip.id

    return _make


@pytest.fixture
def available_seats(session_factory):
    async def _read(trip_id: str) -> int:
        async with session_factory() as session:
            trip = await TripInventoryManager(session).get_trip(trip_id)
            return trip.available_seats

    return _read

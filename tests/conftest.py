"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- HTTP client against the FastAPI app
- Mock notification gateway
- Test data factories (customers, models, services, wallets, bookings)
"""
import pytest
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch
from httpx import Response

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.database import Base, get_db
from app.db.models.booking import Booking, BookingStatus, PaymentStatus
from app.db.models.customer import Customer
from app.db.models.marketplace_model import MarketplaceModel, ModelStatus, ModelTier
from app.db.models.service import Service
from app.db.models.transaction import LedgerTransaction, TransactionKind, TransactionStatus
from app.db.models.wallet import Wallet, WalletStatus
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


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
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Headers identifying the acting administrator"""
    return {"X-Admin-Id": "admin-1"}


# ============================================================================
# Mock External Services
# ============================================================================

@pytest.fixture
def mock_notification_gateway():
    """Mock the notification gateway HTTP API"""
    with patch("httpx.AsyncClient") as mock_client:
        mock_response = MagicMock(spec=Response)
        mock_response.status_code = 200
        mock_response.raise_for_status = MagicMock(return_value=None)

        mock_instance = AsyncMock()
        mock_instance.post = AsyncMock(return_value=mock_response)
        mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
        mock_instance.__aexit__ = AsyncMock(return_value=None)

        mock_client.return_value = mock_instance

        yield mock_instance


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def customer_factory(db_session: AsyncSession):
    """Factory for creating test customers"""
    async def _create_customer(
        first_name: str = "Test",
        last_name: str | None = "Customer",
        whatsapp: str | None = "2055550001",
    ) -> Customer:
        customer = Customer(first_name=first_name, last_name=last_name, whatsapp=whatsapp)
        db_session.add(customer)
        await db_session.commit()
        await db_session.refresh(customer)
        return customer

    return _create_customer


@pytest.fixture
def model_factory(db_session: AsyncSession):
    """Factory for creating test marketplace models"""
    async def _create_model(
        first_name: str = "Test",
        tier: ModelTier = ModelTier.NORMAL,
        status: ModelStatus = ModelStatus.ACTIVE,
        referred_by_id: int | None = None,
        total_referred_models: int = 0,
        total_referral_earnings: int = 0,
        referral_reward_paid: bool = False,
    ) -> MarketplaceModel:
        model = MarketplaceModel(
            first_name=first_name,
            last_name="Model",
            tier=tier,
            status=status,
            referred_by_id=referred_by_id,
            total_referred_models=total_referred_models,
            total_referral_earnings=total_referral_earnings,
            referral_reward_paid=referral_reward_paid,
        )
        db_session.add(model)
        await db_session.commit()
        await db_session.refresh(model)
        return model

    return _create_model


@pytest.fixture
def service_factory(db_session: AsyncSession):
    """Factory for creating bookable services"""
    async def _create_service(name: str = "Dinner date", commission_rate: int = 10) -> Service:
        service = Service(name=name, commission_rate=commission_rate)
        db_session.add(service)
        await db_session.commit()
        await db_session.refresh(service)
        return service

    return _create_service


@pytest.fixture
def wallet_factory(db_session: AsyncSession):
    """Factory for creating wallets with preset totals"""
    async def _create_wallet(
        customer_id: int | None = None,
        model_id: int | None = None,
        status: WalletStatus = WalletStatus.ACTIVE,
        **totals: int,
    ) -> Wallet:
        fields = {
            "total_balance": 0,
            "total_recharge": 0,
            "total_deposit": 0,
            "total_pending": 0,
            "total_withdraw": 0,
            "total_spend": 0,
            "total_refunded": 0,
        }
        fields.update(totals)
        wallet = Wallet(customer_id=customer_id, model_id=model_id, status=status, **fields)
        db_session.add(wallet)
        await db_session.commit()
        await db_session.refresh(wallet)
        return wallet

    return _create_wallet


@pytest.fixture
def transaction_factory(db_session: AsyncSession):
    """Factory for creating ledger transactions directly"""
    async def _create_transaction(
        kind: TransactionKind,
        amount: int,
        status: TransactionStatus = TransactionStatus.PENDING,
        customer_id: int | None = None,
        model_id: int | None = None,
        booking_id: int | None = None,
        commission: int = 0,
    ) -> LedgerTransaction:
        transaction = LedgerTransaction(
            kind=kind,
            amount=amount,
            status=status,
            customer_id=customer_id,
            model_id=model_id,
            booking_id=booking_id,
            commission=commission,
            fee=0,
        )
        db_session.add(transaction)
        await db_session.commit()
        await db_session.refresh(transaction)
        return transaction

    return _create_transaction


@pytest.fixture
def booking_factory(db_session: AsyncSession):
    """Factory for creating bookings in any state"""
    async def _create_booking(
        customer_id: int | None,
        model_id: int | None,
        service_id: int | None,
        price: int = 100000,
        status: BookingStatus = BookingStatus.PENDING,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        commission_rate_snapshot: int | None = None,
        hold_transaction_id: int | None = None,
        release_transaction_id: int | None = None,
    ) -> Booking:
        booking = Booking(
            customer_id=customer_id,
            model_id=model_id,
            service_id=service_id,
            price=price,
            status=status,
            payment_status=payment_status,
            commission_rate_snapshot=commission_rate_snapshot,
            hold_transaction_id=hold_transaction_id,
            release_transaction_id=release_transaction_id,
        )
        db_session.add(booking)
        await db_session.commit()
        await db_session.refresh(booking)
        return booking

    return _create_booking


@pytest.fixture
def escrow_setup(
    db_session: AsyncSession,
    customer_factory,
    model_factory,
    service_factory,
    wallet_factory,
    transaction_factory,
    booking_factory,
):
    """
    Build a customer with a funded wallet, a model (optionally referred) and a
    booking; with ``hold=True`` the escrow hold is placed through the service.
    """
    from app.domain.services.booking_escrow_service import BookingEscrowService

    async def _setup(
        price: int = 100000,
        commission_rate: int = 10,
        customer_funds: int | None = None,
        referrer: MarketplaceModel | None = None,
        hold: bool = True,
        create_customer_wallet: bool = True,
    ) -> dict:
        customer = await customer_factory()
        model = await model_factory(referred_by_id=referrer.id if referrer else None)
        service = await service_factory(commission_rate=commission_rate)
        customer_wallet = None
        if create_customer_wallet:
            funds = price if customer_funds is None else customer_funds
            customer_wallet = await wallet_factory(
                customer_id=customer.id, total_balance=funds, total_recharge=funds
            )
            if funds:
                # Matching ledger row so reconciliation sees the top-up
                await transaction_factory(
                    TransactionKind.RECHARGE,
                    funds,
                    status=TransactionStatus.APPROVED,
                    customer_id=customer.id,
                )
        booking = await booking_factory(
            customer_id=customer.id,
            model_id=model.id,
            service_id=service.id,
            price=price,
        )
        if hold:
            booking = await BookingEscrowService(db_session).place_hold(booking.id, "admin-1")
        return {
            "customer": customer,
            "model": model,
            "service": service,
            "customer_wallet": customer_wallet,
            "booking": booking,
        }

    return _setup

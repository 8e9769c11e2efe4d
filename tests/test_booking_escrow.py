"""
Booking escrow flows: hold, release, refund.

Covers conservation of wallet totals, at-most-once settlement, atomic
rollback after the hold swap and the referral savepoint.
"""
import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy import select, func

from app.core.exceptions import (
    AlreadyResolvedError,
    InsufficientFundsError,
    InvalidStateError,
    MissingWalletError,
    NotFoundException,
    ValidationException,
)
from app.db.models.audit_log import AuditLog, AuditStatus
from app.db.models.booking import Booking, BookingStatus, PaymentStatus
from app.db.models.marketplace_model import MarketplaceModel, ModelTier
from app.db.models.outbox_message import OutboxMessage
from app.db.models.transaction import LedgerTransaction, TransactionKind, TransactionStatus
from app.db.models.wallet import Wallet, WalletStatus
from app.domain.services.booking_escrow_service import BookingEscrowService
from app.domain.services.ledger_service import LedgerService
from app.domain.services.wallet_service import WalletService


async def _wallet_of(db, *, customer_id=None, model_id=None) -> Wallet:
    query = select(Wallet).where(Wallet.status == WalletStatus.ACTIVE)
    if customer_id is not None:
        query = query.where(Wallet.customer_id == customer_id)
    else:
        query = query.where(Wallet.model_id == model_id)
    result = await db.execute(query.execution_options(populate_existing=True))
    return result.scalar_one()


async def _booking(db, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _transactions(db, booking_id: int) -> dict:
    result = await db.execute(
        select(LedgerTransaction)
        .where(LedgerTransaction.booking_id == booking_id)
        .execution_options(populate_existing=True)
    )
    return {tx.kind: tx for tx in result.scalars().all()}


async def _audits(db, action: str) -> list[AuditLog]:
    result = await db.execute(select(AuditLog).where(AuditLog.action == action))
    return list(result.scalars().all())


# ============================================================================
# Hold
# ============================================================================

@pytest.mark.unit
async def test_place_hold_moves_price_into_escrow(escrow_setup, db_session):
    setup = await escrow_setup(price=100000, commission_rate=10)
    booking = setup["booking"]

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.HELD
    assert booking.commission_rate_snapshot == 10

    txs = await _transactions(db_session, booking.id)
    hold = txs[TransactionKind.BOOKING_HOLD]
    placeholder = txs[TransactionKind.BOOKING_EARNING]
    assert hold.id == booking.hold_transaction_id
    assert hold.status == TransactionStatus.HELD
    assert hold.amount == 100000
    assert placeholder.id == booking.release_transaction_id
    assert placeholder.status == TransactionStatus.PENDING
    assert (placeholder.amount, placeholder.commission) == (90000, 10000)

    customer_wallet = await _wallet_of(db_session, customer_id=setup["customer"].id)
    model_wallet = await _wallet_of(db_session, model_id=setup["model"].id)
    assert customer_wallet.total_spend == 100000
    assert customer_wallet.available_balance == 0
    assert model_wallet.total_pending == 90000
    assert model_wallet.total_balance == 0


@pytest.mark.unit
async def test_place_hold_insufficient_funds_changes_nothing(escrow_setup, db_session):
    setup = await escrow_setup(price=100000, customer_funds=99999, hold=False)
    booking_id = setup["booking"].id
    customer_id = setup["customer"].id

    with pytest.raises(InsufficientFundsError):
        await BookingEscrowService(db_session).place_hold(booking_id, "admin-1")

    booking = await _booking(db_session, booking_id)
    assert booking.status == BookingStatus.PENDING
    assert await _transactions(db_session, booking_id) == {}
    wallet = await _wallet_of(db_session, customer_id=customer_id)
    assert wallet.total_spend == 0

    failed = await _audits(db_session, "place_hold")
    assert [a.status for a in failed] == [AuditStatus.FAILED]
    assert failed[0].payload["error_type"] == "InsufficientFundsError"


@pytest.mark.unit
async def test_place_hold_requires_customer_wallet(escrow_setup, db_session):
    setup = await escrow_setup(hold=False, create_customer_wallet=False)
    booking_id = setup["booking"].id

    with pytest.raises(MissingWalletError):
        await BookingEscrowService(db_session).place_hold(booking_id, "admin-1")


@pytest.mark.unit
async def test_place_hold_twice_is_rejected(escrow_setup, db_session):
    setup = await escrow_setup()
    booking_id = setup["booking"].id

    with pytest.raises(InvalidStateError):
        await BookingEscrowService(db_session).place_hold(booking_id, "admin-1")


# ============================================================================
# Release
# ============================================================================

@pytest.mark.integration
async def test_release_pays_model_net_of_commission(escrow_setup, db_session):
    setup = await escrow_setup(price=100000, commission_rate=10)
    booking = setup["booking"]
    placeholder_id = booking.release_transaction_id

    result = await BookingEscrowService(db_session).release_booking(booking.id, "admin-7")

    assert (result.commission, result.net, result.commission_rate) == (10000, 90000, 10)
    assert result.earning_transaction.id == placeholder_id
    assert result.earning_transaction.status == TransactionStatus.APPROVED
    assert result.earning_transaction.approved_by_id == "admin-7"
    assert result.referral_commission.paid is False

    booking = await _booking(db_session, booking.id)
    assert booking.status == BookingStatus.COMPLETED
    assert booking.payment_status == PaymentStatus.RELEASED
    assert booking.completed_at is not None
    assert booking.release_transaction_id == placeholder_id

    txs = await _transactions(db_session, booking.id)
    assert txs[TransactionKind.BOOKING_HOLD].status == TransactionStatus.RELEASED
    assert TransactionKind.BOOKING_REFERRAL not in txs

    model_wallet = await _wallet_of(db_session, model_id=setup["model"].id)
    assert model_wallet.total_balance == 90000
    assert model_wallet.total_pending == 0

    audits = await _audits(db_session, "release_booking")
    assert [a.status for a in audits] == [AuditStatus.SUCCESS]
    queued = await db_session.execute(
        select(func.count(OutboxMessage.id)).where(OutboxMessage.kind == "booking_released")
    )
    assert queued.scalar_one() == 2


@pytest.mark.integration
async def test_release_odd_price_and_rate(escrow_setup, db_session):
    setup = await escrow_setup(price=99999, commission_rate=33)

    result = await BookingEscrowService(db_session).release_booking(setup["booking"].id, "admin-1")

    assert (result.commission, result.net) == (32999, 67000)
    model_wallet = await _wallet_of(db_session, model_id=setup["model"].id)
    assert model_wallet.total_balance == 67000


@pytest.mark.integration
async def test_wallet_summaries_agree_after_release(escrow_setup, db_session):
    setup = await escrow_setup(price=100000, commission_rate=10)
    await BookingEscrowService(db_session).release_booking(setup["booking"].id, "admin-1")

    service = WalletService(db_session)
    customer_wallet = await _wallet_of(db_session, customer_id=setup["customer"].id)
    model_wallet = await _wallet_of(db_session, model_id=setup["model"].id)

    customer_summary = await service.get_wallet_summary(customer_wallet.id)
    model_summary = await service.get_wallet_summary(model_wallet.id)

    assert customer_summary.consistent is True
    assert customer_summary.available_balance == 0
    assert model_summary.consistent is True
    assert model_summary.available_balance == 90000


@pytest.mark.integration
async def test_double_release_is_rejected_and_applied_once(escrow_setup, db_session):
    setup = await escrow_setup()
    booking_id = setup["booking"].id
    model_id = setup["model"].id
    service = BookingEscrowService(db_session)
    await service.release_booking(booking_id, "admin-1")

    with pytest.raises(AlreadyResolvedError):
        await service.release_booking(booking_id, "admin-2")

    model_wallet = await _wallet_of(db_session, model_id=model_id)
    assert model_wallet.total_balance == 90000
    earnings = await db_session.execute(
        select(func.count(LedgerTransaction.id)).where(
            LedgerTransaction.booking_id == booking_id,
            LedgerTransaction.kind == TransactionKind.BOOKING_EARNING,
        )
    )
    assert earnings.scalar_one() == 1


@pytest.mark.unit
async def test_release_pending_booking_is_invalid_state(escrow_setup, db_session):
    setup = await escrow_setup(hold=False)

    with pytest.raises(InvalidStateError) as exc_info:
        await BookingEscrowService(db_session).release_booking(setup["booking"].id, "admin-1")

    assert exc_info.value.details["current_status"] == "pending"


@pytest.mark.unit
async def test_release_missing_booking(db_session):
    with pytest.raises(NotFoundException):
        await BookingEscrowService(db_session).release_booking(98765, "admin-1")


@pytest.mark.integration
async def test_release_lost_hold_race_changes_nothing(escrow_setup, db_session):
    setup = await escrow_setup()
    booking = setup["booking"]
    booking_id, hold_id = booking.id, booking.hold_transaction_id
    model_id = setup["model"].id

    # Another administrator already settled the hold
    await LedgerService(db_session).transition(
        hold_id, [TransactionStatus.HELD], TransactionStatus.REFUNDED
    )
    await db_session.commit()

    with pytest.raises(AlreadyResolvedError):
        await BookingEscrowService(db_session).release_booking(booking_id, "admin-1")

    booking = await _booking(db_session, booking_id)
    assert booking.status == BookingStatus.CONFIRMED
    model_wallet = await _wallet_of(db_session, model_id=model_id)
    assert model_wallet.total_balance == 0
    assert model_wallet.total_pending == 90000


@pytest.mark.integration
async def test_failure_after_hold_swap_rolls_back_everything(escrow_setup, db_session):
    setup = await escrow_setup()
    booking_id = setup["booking"].id
    hold_id = setup["booking"].hold_transaction_id
    placeholder_id = setup["booking"].release_transaction_id
    model_wallet = await _wallet_of(db_session, model_id=setup["model"].id)

    # A suspended model wallet makes the wallet step fail after the swap
    await WalletService(db_session).suspend_wallet(model_wallet.id, "admin-1")

    with pytest.raises(MissingWalletError):
        await BookingEscrowService(db_session).release_booking(booking_id, "admin-1")

    ledger = LedgerService(db_session)
    hold = await ledger.get(hold_id)
    placeholder = await ledger.get(placeholder_id)
    await db_session.refresh(hold)
    await db_session.refresh(placeholder)
    assert hold.status == TransactionStatus.HELD
    assert placeholder.status == TransactionStatus.PENDING

    booking = await _booking(db_session, booking_id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.HELD
    await db_session.refresh(model_wallet)
    assert model_wallet.total_balance == 0
    assert model_wallet.total_pending == 90000


@pytest.mark.integration
async def test_release_without_placeholder_appends_earning(
    customer_factory, model_factory, service_factory, wallet_factory,
    transaction_factory, booking_factory, db_session,
):
    customer = await customer_factory()
    model = await model_factory()
    service = await service_factory(commission_rate=20)
    await wallet_factory(customer_id=customer.id, total_balance=5000, total_spend=5000)
    booking = await booking_factory(
        customer_id=customer.id, model_id=model.id, service_id=service.id,
        price=5000, status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.HELD,
        commission_rate_snapshot=20,
    )
    hold = await transaction_factory(
        TransactionKind.BOOKING_HOLD, 5000, status=TransactionStatus.HELD,
        customer_id=customer.id, booking_id=booking.id,
    )
    booking.hold_transaction_id = hold.id
    await db_session.commit()

    result = await BookingEscrowService(db_session).release_booking(booking.id, "admin-1")

    assert result.earning_transaction.status == TransactionStatus.APPROVED
    assert (result.earning_transaction.amount, result.earning_transaction.commission) == (4000, 1000)
    model_wallet = await _wallet_of(db_session, model_id=model.id)
    assert model_wallet.total_balance == 4000
    assert model_wallet.total_pending == 0


@pytest.mark.integration
async def test_referral_failure_does_not_block_release(escrow_setup, model_factory, db_session):
    referrer = await model_factory(first_name="Referrer")
    setup = await escrow_setup(referrer=referrer)

    with patch(
        "app.domain.services.referral_service.ReferralService.process_booking_referral_commission",
        new=AsyncMock(side_effect=RuntimeError("referral store unavailable")),
    ):
        result = await BookingEscrowService(db_session).release_booking(setup["booking"].id, "admin-1")

    assert result.referral_commission is None
    booking = await _booking(db_session, setup["booking"].id)
    assert booking.status == BookingStatus.COMPLETED
    model_wallet = await _wallet_of(db_session, model_id=setup["model"].id)
    assert model_wallet.total_balance == 90000


@pytest.mark.integration
async def test_release_without_snapshot_is_rejected(
    customer_factory, model_factory, service_factory, wallet_factory,
    transaction_factory, booking_factory, db_session,
):
    customer = await customer_factory()
    model = await model_factory()
    service = await service_factory(commission_rate=10)
    await wallet_factory(customer_id=customer.id, total_balance=5000, total_spend=5000)
    booking = await booking_factory(
        customer_id=customer.id, model_id=model.id, service_id=service.id,
        price=5000, status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.HELD,
    )
    hold = await transaction_factory(
        TransactionKind.BOOKING_HOLD, 5000, status=TransactionStatus.HELD,
        customer_id=customer.id, booking_id=booking.id,
    )
    booking.hold_transaction_id = hold.id
    await db_session.commit()
    booking_id, hold_id = booking.id, hold.id

    with pytest.raises(ValidationException) as exc_info:
        await BookingEscrowService(db_session).release_booking(booking_id, "admin-1")

    assert "commission_rate_snapshot" in exc_info.value.details["fields"]
    txs = await _transactions(db_session, booking_id)
    assert txs[TransactionKind.BOOKING_HOLD].id == hold_id
    assert txs[TransactionKind.BOOKING_HOLD].status == TransactionStatus.HELD
    assert TransactionKind.BOOKING_EARNING not in txs
    assert (await _booking(db_session, booking_id)).status == BookingStatus.CONFIRMED
    failures = await _audits(db_session, "release_booking")
    assert [a.status for a in failures] == [AuditStatus.FAILED]


@pytest.mark.integration
async def test_rate_edit_after_hold_keeps_snapshot(escrow_setup, db_session):
    setup = await escrow_setup(price=100000, commission_rate=10)
    booking_id = setup["booking"].id
    setup["service"].commission_rate = 40
    await db_session.commit()

    result = await BookingEscrowService(db_session).release_booking(booking_id, "admin-1")

    assert (result.commission_rate, result.commission, result.net) == (10, 10000, 90000)
    txs = await _transactions(db_session, booking_id)
    assert txs[TransactionKind.BOOKING_EARNING].amount == 90000
    model_wallet = await _wallet_of(db_session, model_id=setup["model"].id)
    assert model_wallet.total_balance == 90000


async def _eligible_referrer(model_factory):
    return await model_factory(
        first_name="Referrer", tier=ModelTier.SPECIAL, total_referred_models=2
    )


async def _referral_rows(db, booking_id: int) -> int:
    result = await db.execute(
        select(func.count(LedgerTransaction.id)).where(
            LedgerTransaction.booking_id == booking_id,
            LedgerTransaction.kind == TransactionKind.BOOKING_REFERRAL,
        )
    )
    return result.scalar_one()


@pytest.mark.integration
async def test_referral_wallet_failure_rolls_back_only_the_cascade(
    escrow_setup, model_factory, wallet_factory, db_session
):
    referrer = await _eligible_referrer(model_factory)
    referrer_id = referrer.id
    # the referral row is appended before the referrer's wallet lookup fails
    await wallet_factory(model_id=referrer_id, status=WalletStatus.SUSPENDED)
    setup = await escrow_setup(price=100000, commission_rate=10, referrer=referrer)
    booking_id = setup["booking"].id

    result = await BookingEscrowService(db_session).release_booking(booking_id, "admin-1")

    assert result.referral_commission is None
    booking = await _booking(db_session, booking_id)
    assert booking.status == BookingStatus.COMPLETED
    assert booking.payment_status == PaymentStatus.RELEASED
    model_wallet = await _wallet_of(db_session, model_id=setup["model"].id)
    assert model_wallet.total_balance == 90000
    assert await _referral_rows(db_session, booking_id) == 0

    result = await db_session.execute(
        select(MarketplaceModel)
        .where(MarketplaceModel.id == referrer_id)
        .execution_options(populate_existing=True)
    )
    assert result.scalar_one().total_referral_earnings == 0


@pytest.mark.integration
async def test_release_retry_pays_referral_once(escrow_setup, model_factory, db_session):
    referrer = await _eligible_referrer(model_factory)
    referrer_id = referrer.id
    setup = await escrow_setup(price=100000, commission_rate=10, referrer=referrer)
    booking_id = setup["booking"].id
    escrow = BookingEscrowService(db_session)

    first = await escrow.release_booking(booking_id, "admin-1")
    with pytest.raises(AlreadyResolvedError):
        await escrow.release_booking(booking_id, "admin-2")

    assert first.referral_commission.paid is True
    assert first.referral_commission.amount == 2000
    assert await _referral_rows(db_session, booking_id) == 1
    referrer_wallet = await _wallet_of(db_session, model_id=referrer_id)
    assert referrer_wallet.total_balance == 2000


# ============================================================================
# Refund
# ============================================================================

@pytest.mark.integration
async def test_refund_returns_price_to_customer(escrow_setup, db_session):
    setup = await escrow_setup(price=100000, commission_rate=10)
    booking = setup["booking"]

    result = await BookingEscrowService(db_session).refund_booking(booking.id, "admin-3", "No show")

    assert result.amount == 100000
    assert result.refund_transaction.kind == TransactionKind.BOOKING_REFUND
    assert result.refund_transaction.status == TransactionStatus.APPROVED
    assert result.refund_transaction.reason == "No show"

    booking = await _booking(db_session, booking.id)
    assert booking.status == BookingStatus.CANCELLED
    assert booking.payment_status == PaymentStatus.REFUNDED
    assert booking.cancelled_at is not None

    txs = await _transactions(db_session, booking.id)
    assert txs[TransactionKind.BOOKING_HOLD].status == TransactionStatus.REFUNDED
    assert txs[TransactionKind.BOOKING_EARNING].status == TransactionStatus.REFUNDED

    customer_wallet = await _wallet_of(db_session, customer_id=setup["customer"].id)
    model_wallet = await _wallet_of(db_session, model_id=setup["model"].id)
    assert customer_wallet.total_refunded == 100000
    assert customer_wallet.available_balance == 100000
    assert model_wallet.total_pending == 0
    assert model_wallet.total_balance == 0

    summary = await WalletService(db_session).get_wallet_summary(customer_wallet.id)
    assert summary.consistent is True
    assert summary.available_balance == 100000


@pytest.mark.integration
async def test_refund_then_release_is_rejected(escrow_setup, db_session):
    setup = await escrow_setup()
    booking_id = setup["booking"].id
    customer_id = setup["customer"].id
    service = BookingEscrowService(db_session)
    await service.refund_booking(booking_id, "admin-1")

    with pytest.raises(AlreadyResolvedError):
        await service.release_booking(booking_id, "admin-1")
    with pytest.raises(AlreadyResolvedError):
        await service.refund_booking(booking_id, "admin-1")

    customer_wallet = await _wallet_of(db_session, customer_id=customer_id)
    assert customer_wallet.total_refunded == 100000


@pytest.mark.integration
async def test_refund_with_suspended_customer_wallet(escrow_setup, db_session):
    setup = await escrow_setup()
    booking_id = setup["booking"].id
    hold_id = setup["booking"].hold_transaction_id
    await WalletService(db_session).suspend_wallet(setup["customer_wallet"].id, "admin-1")

    with pytest.raises(MissingWalletError):
        await BookingEscrowService(db_session).refund_booking(booking_id, "admin-1")

    hold = await LedgerService(db_session).get(hold_id)
    await db_session.refresh(hold)
    assert hold.status == TransactionStatus.HELD

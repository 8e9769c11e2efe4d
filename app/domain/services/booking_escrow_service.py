"""
Booking Escrow Service - holds, releases and refunds customer funds

Lifecycle:
    pending -> confirmed (hold placed)
    confirmed -> completed (release) | cancelled (refund) | disputed
    disputed -> completed | cancelled (see DisputeService)

Every public operation is one atomic unit:
1. Lock the booking row (SELECT ... FOR UPDATE)
2. Check preconditions (terminal -> AlreadyResolvedError, wrong state -> InvalidStateError)
3. Compare-and-swap the hold transaction; a lost race -> AlreadyResolvedError
4. Apply ledger entries and wallet deltas
5. Commit, or roll back everything and audit the failure

Audit records and notification intents are written only after the commit.
"""
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AlreadyResolvedError,
    ErrorCode,
    InsufficientFundsError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundException,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.booking import Booking, BookingStatus, PaymentStatus
from app.db.models.service import Service
from app.db.models.transaction import LedgerTransaction, TransactionKind, TransactionStatus
from app.domain.owner import OwnerRef
from app.domain.services.audit_service import AuditService
from app.domain.services.commission import CommissionSplit, split
from app.domain.services.ledger_service import LedgerService
from app.domain.services.notification_service import NotificationKind, NotificationService
from app.domain.services.referral_service import ReferralCommissionResult, ReferralService
from app.domain.services.wallet_service import WalletService

logger = get_logger(__name__)


@dataclass
class ReleaseResult:
    booking: Booking
    earning_transaction: LedgerTransaction
    commission: int
    net: int
    commission_rate: int
    referral_commission: ReferralCommissionResult | None = None


@dataclass
class RefundResult:
    booking: Booking
    refund_transaction: LedgerTransaction
    amount: int


class BookingEscrowService:
    """Escrow state machine for bookings"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)
        self.wallets = WalletService(db)
        self.referrals = ReferralService(db)
        self.audit = AuditService(db)
        self.notifications = NotificationService(db)

    # ==================== Lookups ====================

    async def get_booking(self, booking_id: int, for_update: bool = False) -> Booking:
        query = select(Booking).where(Booking.id == booking_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundException("Booking", booking_id, ErrorCode.BOOKING_NOT_FOUND)
        return booking

    async def _hold_rate(self, booking: Booking) -> int:
        """Rate to snapshot when the hold is placed"""
        if booking.commission_rate_snapshot is not None:
            return booking.commission_rate_snapshot
        if booking.service_id is not None:
            result = await self.db.execute(
                select(Service.commission_rate).where(Service.id == booking.service_id)
            )
            rate = result.scalar_one_or_none()
            if rate is not None:
                return rate
        raise ValidationException(
            f"Booking {booking.id} has no commission rate", field="service_id"
        )

    @staticmethod
    def _snapshot_rate(booking: Booking) -> int:
        """Rate frozen at hold time; the service's current rate is never used"""
        if booking.commission_rate_snapshot is None:
            raise ValidationException(
                f"Booking {booking.id} has no commission rate snapshot",
                field="commission_rate_snapshot",
            )
        return booking.commission_rate_snapshot

    @staticmethod
    def _require_status(booking: Booking, required: BookingStatus) -> None:
        if booking.is_terminal:
            raise AlreadyResolvedError("Booking", booking.id, booking.status.value)
        if booking.status != required:
            raise InvalidStateError(booking.id, booking.status.value, required.value)

    async def abort_unit(self, action: str, actor_id: str | None, error: Exception, payload: dict) -> None:
        """Roll back the unit and leave a failed audit record behind"""
        await self.db.rollback()
        logger.warning(
            f"Escrow operation failed: {action}",
            extra_data={**payload, "action": action, "error": str(error)}
        )
        await self.audit.record_failure(action, actor_id, error, payload)

    # ==================== Hold ====================

    async def place_hold(self, booking_id: int, actor_id: str | None) -> Booking:
        """Move the booking price from the customer's wallet into escrow"""
        try:
            booking = await self.get_booking(booking_id, for_update=True)
            self._require_status(booking, BookingStatus.PENDING)
            missing = {
                name: f"booking has no {name}"
                for name in ("customer_id", "model_id", "service_id")
                if getattr(booking, name) is None
            }
            if missing:
                raise ValidationException("Booking is incomplete", fields=missing)

            rate = await self._hold_rate(booking)
            customer_owner = OwnerRef.for_customer(booking.customer_id)
            customer_wallet = await self.wallets.ensure_wallet(customer_owner, auto_create=False)
            available = customer_wallet.available_balance
            if available < booking.price:
                raise InsufficientFundsError(
                    customer_wallet.id, "available_balance", available, booking.price
                )

            hold = await self.ledger.append(
                kind=TransactionKind.BOOKING_HOLD,
                amount=booking.price,
                status=TransactionStatus.HELD,
                owner=customer_owner,
                booking_id=booking.id,
                reason=f"Escrow hold for booking #{booking.id}",
            )
            self.wallets.credit(customer_wallet, "total_spend", booking.price)

            parts = split(booking.price, rate)
            placeholder = await self._create_earning_placeholder(booking, parts, rate)
            model_wallet = await self.wallets.ensure_wallet(OwnerRef.for_model(booking.model_id))
            self.wallets.credit(model_wallet, "total_pending", parts.net)

            booking.commission_rate_snapshot = rate
            booking.status = BookingStatus.CONFIRMED
            booking.payment_status = PaymentStatus.HELD
            booking.hold_transaction_id = hold.id
            booking.release_transaction_id = placeholder.id

            await self.db.commit()
        except Exception as e:
            await self.abort_unit("place_hold", actor_id, e, {"booking_id": booking_id})
            raise

        payload = {
            "booking_id": booking.id,
            "price": booking.price,
            "commission": parts.commission,
            "net": parts.net,
            "hold_transaction_id": hold.id,
        }
        customer_id, model_id = booking.customer_id, booking.model_id
        await self.audit.record_audit(
            action="place_hold",
            actor_id=actor_id,
            description=f"Held {payload['price']} for booking {booking_id}",
            payload=payload,
        )
        await self.notifications.notify_customer(
            NotificationKind.BOOKING_HOLD_PLACED, customer_id, payload
        )
        await self.notifications.notify_model(
            NotificationKind.BOOKING_HOLD_PLACED, model_id, payload
        )
        return booking

    async def _create_earning_placeholder(
        self, booking: Booking, parts: CommissionSplit, rate: int
    ) -> LedgerTransaction:
        """Pending earning the model can see while funds sit in escrow"""
        return await self.ledger.append(
            kind=TransactionKind.BOOKING_EARNING,
            amount=parts.net,
            commission=parts.commission,
            status=TransactionStatus.PENDING,
            owner=OwnerRef.for_model(booking.model_id),
            booking_id=booking.id,
            reason=f"Pending earning for booking #{booking.id} ({rate}% commission)",
        )

    # ==================== Dispute ====================

    async def open_dispute(self, booking_id: int, actor_id: str | None, reason: str) -> Booking:
        """Freeze a confirmed booking until an administrator resolves it"""
        try:
            booking = await self.get_booking(booking_id, for_update=True)
            self._require_status(booking, BookingStatus.CONFIRMED)
            booking.status = BookingStatus.DISPUTED
            booking.dispute_reason = reason
            booking.disputed_at = utcnow()
            await self.db.commit()
        except Exception as e:
            await self.abort_unit("open_dispute", actor_id, e, {"booking_id": booking_id})
            raise

        payload = {"booking_id": booking.id, "reason": reason}
        customer_id, model_id = booking.customer_id, booking.model_id
        await self.audit.record_audit(
            action="open_dispute",
            actor_id=actor_id,
            description=f"Dispute opened on booking {booking_id}",
            payload=payload,
        )
        await self.notifications.notify_customer(
            NotificationKind.BOOKING_DISPUTED, customer_id, payload
        )
        await self.notifications.notify_model(
            NotificationKind.BOOKING_DISPUTED, model_id, payload
        )
        return booking

    # ==================== Release ====================

    async def release_booking(self, booking_id: int, approver_id: str | None) -> ReleaseResult:
        """Pay the model its net share of a confirmed booking"""
        try:
            booking = await self.get_booking(booking_id, for_update=True)
            self._require_status(booking, BookingStatus.CONFIRMED)
            result = await self.apply_release(booking, approver_id)
            await self.db.commit()
        except Exception as e:
            await self.abort_unit("release_booking", approver_id, e, {"booking_id": booking_id})
            raise

        await self.publish_release(result, approver_id, action="release_booking")
        return result

    async def apply_release(
        self, booking: Booking, approver_id: str | None, reason: str | None = None
    ) -> ReleaseResult:
        """Release mutations for a locked booking; the caller commits"""
        if booking.model_id is None or booking.hold_transaction_id is None:
            raise ValidationException(
                "Booking has no model or hold transaction",
                fields={
                    name: f"booking has no {name}"
                    for name in ("model_id", "hold_transaction_id")
                    if getattr(booking, name) is None
                },
            )

        rate = self._snapshot_rate(booking)
        await self._swap_hold(booking, TransactionStatus.RELEASED, approver_id)

        parts = split(booking.price, rate)
        reason = reason or f"Earning for booking #{booking.id} ({rate}% commission)"

        if booking.release_transaction_id is not None:
            earning = await self._finalize_earning(booking, approver_id, reason)
        else:
            earning = await self._append_fallback_earning(booking, parts, approver_id, reason)

        model_wallet = await self.wallets.ensure_wallet(OwnerRef.for_model(booking.model_id))
        self.wallets.credit(model_wallet, "total_balance", parts.net)
        self.wallets.debit(model_wallet, "total_pending", parts.net)

        booking.status = BookingStatus.COMPLETED
        booking.payment_status = PaymentStatus.RELEASED
        booking.completed_at = utcnow()
        booking.release_transaction_id = earning.id

        referral = await self._run_referral_cascade(booking, approver_id)

        logger.info(
            "Booking released",
            extra_data={
                "booking_id": booking.id,
                "model_id": booking.model_id,
                "commission": parts.commission,
                "net": parts.net,
                "commission_rate": rate,
                "referral_paid": bool(referral and referral.paid),
            }
        )
        return ReleaseResult(
            booking=booking,
            earning_transaction=earning,
            commission=parts.commission,
            net=parts.net,
            commission_rate=rate,
            referral_commission=referral,
        )

    async def _swap_hold(
        self, booking: Booking, target: TransactionStatus, approver_id: str | None
    ) -> LedgerTransaction:
        try:
            return await self.ledger.transition(
                booking.hold_transaction_id,
                [TransactionStatus.HELD],
                target,
                approved_by_id=approver_id,
            )
        except InvalidTransitionError as e:
            raise AlreadyResolvedError("Booking", booking.id, e.current_status) from e

    async def _finalize_earning(
        self, booking: Booking, approver_id: str | None, reason: str
    ) -> LedgerTransaction:
        return await self.ledger.transition(
            booking.release_transaction_id,
            [TransactionStatus.PENDING],
            TransactionStatus.APPROVED,
            reason=reason,
            approved_by_id=approver_id,
        )

    async def _append_fallback_earning(
        self,
        booking: Booking,
        parts: CommissionSplit,
        approver_id: str | None,
        reason: str,
    ) -> LedgerTransaction:
        """Earning for bookings held before placeholders existed"""
        return await self.ledger.append(
            kind=TransactionKind.BOOKING_EARNING,
            amount=parts.net,
            commission=parts.commission,
            status=TransactionStatus.APPROVED,
            owner=OwnerRef.for_model(booking.model_id),
            booking_id=booking.id,
            reason=reason,
            approved_by_id=approver_id,
        )

    async def _run_referral_cascade(
        self, booking: Booking, approver_id: str | None
    ) -> ReferralCommissionResult | None:
        """Referral commission in a savepoint; its failure keeps the release"""
        try:
            async with self.db.begin_nested():
                return await self.referrals.process_booking_referral_commission(
                    booked_model_id=booking.model_id,
                    booking_price=booking.price,
                    booking_id=booking.id,
                    approver_id=approver_id,
                )
        except Exception as e:
            logger.warning(
                "Referral cascade failed, release continues",
                extra_data={
                    "booking_id": booking.id,
                    "model_id": booking.model_id,
                    "error": str(e),
                },
                exc_info=True
            )
            return None

    async def publish_release(
        self, result: ReleaseResult, approver_id: str | None, action: str
    ) -> None:
        booking = result.booking
        referral = result.referral_commission
        payload = {
            "booking_id": booking.id,
            "price": booking.price,
            "commission": result.commission,
            "net": result.net,
            "commission_rate": result.commission_rate,
            "earning_transaction_id": result.earning_transaction.id,
            "referral_commission": referral.amount if referral and referral.paid else 0,
        }
        customer_id, model_id = booking.customer_id, booking.model_id

        await self.audit.record_audit(
            action=action,
            actor_id=approver_id,
            description=f"Released booking {payload['booking_id']}: net {result.net} to model {model_id}",
            payload=payload,
        )
        await self.notifications.notify_customer(
            NotificationKind.BOOKING_RELEASED, customer_id, payload
        )
        await self.notifications.notify_model(
            NotificationKind.BOOKING_RELEASED, model_id, payload
        )
        if referral and referral.paid:
            await self.notifications.notify_model(
                NotificationKind.REFERRAL_COMMISSION,
                referral.referrer_id,
                {
                    "booking_id": payload["booking_id"],
                    "amount": referral.amount,
                    "rate_percent": referral.rate_percent,
                },
            )

    # ==================== Refund ====================

    async def refund_booking(
        self, booking_id: int, approver_id: str | None, reason: str | None = None
    ) -> RefundResult:
        """Return the held price to the customer"""
        try:
            booking = await self.get_booking(booking_id, for_update=True)
            self._require_status(booking, BookingStatus.CONFIRMED)
            result = await self.apply_refund(booking, approver_id, reason)
            await self.db.commit()
        except Exception as e:
            await self.abort_unit("refund_booking", approver_id, e, {"booking_id": booking_id})
            raise

        await self.publish_refund(result, approver_id, action="refund_booking")
        return result

    async def apply_refund(
        self, booking: Booking, approver_id: str | None, reason: str | None = None
    ) -> RefundResult:
        """Refund mutations for a locked booking; the caller commits"""
        if booking.customer_id is None or booking.hold_transaction_id is None:
            raise ValidationException(
                "Booking has no customer or hold transaction",
                fields={
                    name: f"booking has no {name}"
                    for name in ("customer_id", "hold_transaction_id")
                    if getattr(booking, name) is None
                },
            )

        customer_owner = OwnerRef.for_customer(booking.customer_id)
        customer_wallet = await self.wallets.ensure_wallet(customer_owner, auto_create=False)

        await self._swap_hold(booking, TransactionStatus.REFUNDED, approver_id)

        reason = reason or f"Refund for booking #{booking.id}"
        refund = await self.ledger.append(
            kind=TransactionKind.BOOKING_REFUND,
            amount=booking.price,
            status=TransactionStatus.APPROVED,
            owner=customer_owner,
            booking_id=booking.id,
            reason=reason,
            approved_by_id=approver_id,
        )
        self.wallets.credit(customer_wallet, "total_refunded", booking.price)

        if booking.release_transaction_id is not None:
            placeholder = await self.ledger.transition(
                booking.release_transaction_id,
                [TransactionStatus.PENDING],
                TransactionStatus.REFUNDED,
                reason=reason,
                approved_by_id=approver_id,
            )
            if booking.model_id is not None:
                model_wallet = await self.wallets.ensure_wallet(
                    OwnerRef.for_model(booking.model_id)
                )
                self.wallets.debit(model_wallet, "total_pending", placeholder.amount)

        booking.status = BookingStatus.CANCELLED
        booking.payment_status = PaymentStatus.REFUNDED
        booking.cancelled_at = utcnow()

        logger.info(
            "Booking refunded",
            extra_data={
                "booking_id": booking.id,
                "customer_id": booking.customer_id,
                "amount": booking.price,
            }
        )
        return RefundResult(booking=booking, refund_transaction=refund, amount=booking.price)

    async def publish_refund(
        self, result: RefundResult, approver_id: str | None, action: str
    ) -> None:
        booking = result.booking
        payload = {
            "booking_id": booking.id,
            "amount": result.amount,
            "refund_transaction_id": result.refund_transaction.id,
        }
        customer_id, model_id = booking.customer_id, booking.model_id

        await self.audit.record_audit(
            action=action,
            actor_id=approver_id,
            description=f"Refunded {result.amount} to customer {customer_id}",
            payload=payload,
        )
        await self.notifications.notify_customer(
            NotificationKind.BOOKING_REFUNDED, customer_id, payload
        )
        await self.notifications.notify_model(
            NotificationKind.BOOKING_REFUNDED, model_id, payload
        )

"""
Ledger Transaction Model - what happened to money

Rows are never deleted. After creation only the status, reason,
reject_reason and approver change, and status moves only along
the paths in ``LEGAL_TRANSITIONS``.
"""
import enum
from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    DateTime,
    ForeignKey,
    String,
    Text,
    CheckConstraint,
    UniqueConstraint,
)

from app.db.database import Base, str_enum, utcnow


class TransactionKind(str, enum.Enum):
    RECHARGE = "recharge"
    WITHDRAWAL = "withdrawal"
    PAYMENT = "payment"
    BOOKING_HOLD = "booking_hold"
    BOOKING_REFUND = "booking_refund"
    BOOKING_EARNING = "booking_earning"
    BOOKING_REFERRAL = "booking_referral"
    SUBSCRIPTION = "subscription"
    SUBSCRIPTION_REFERRAL = "subscription_referral"
    REFERRAL = "referral"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    HELD = "held"
    APPROVED = "approved"
    RELEASED = "released"
    REFUNDED = "refunded"
    REJECTED = "rejected"


_APPROVABLE = {
    TransactionStatus.PENDING: {TransactionStatus.APPROVED, TransactionStatus.REJECTED},
}

LEGAL_TRANSITIONS: dict[TransactionKind, dict[TransactionStatus, set[TransactionStatus]]] = {
    TransactionKind.BOOKING_HOLD: {
        TransactionStatus.HELD: {TransactionStatus.RELEASED, TransactionStatus.REFUNDED},
    },
    TransactionKind.BOOKING_EARNING: {
        TransactionStatus.PENDING: {TransactionStatus.APPROVED, TransactionStatus.REFUNDED},
    },
    TransactionKind.RECHARGE: _APPROVABLE,
    TransactionKind.WITHDRAWAL: _APPROVABLE,
    TransactionKind.PAYMENT: _APPROVABLE,
    TransactionKind.SUBSCRIPTION: _APPROVABLE,
}


def is_legal_transition(
    kind: TransactionKind,
    current: TransactionStatus,
    target: TransactionStatus,
) -> bool:
    return target in LEGAL_TRANSITIONS.get(kind, {}).get(current, set())


class LedgerTransaction(Base):
    """Single monetary movement owned by one customer or one model"""

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint(
            "(customer_id IS NULL) <> (model_id IS NULL)",
            name="ck_transactions_single_owner",
        ),
        CheckConstraint("commission >= 0", name="ck_transactions_commission_non_negative"),
        CheckConstraint("fee >= 0", name="ck_transactions_fee_non_negative"),
        # One hold, one earning, one refund and one referral commission per booking
        UniqueConstraint("booking_id", "kind", name="uq_transactions_booking_kind"),
    )

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(str_enum(TransactionKind), nullable=False, index=True)

    amount = Column(BigInteger, nullable=False)
    commission = Column(BigInteger, default=0, nullable=False)
    fee = Column(BigInteger, default=0, nullable=False)

    status = Column(str_enum(TransactionStatus), nullable=False, index=True)

    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    model_id = Column(Integer, ForeignKey("models.id"), nullable=True, index=True)
    # bookings also points back here (hold/release), so this side is added by ALTER
    booking_id = Column(
        Integer,
        ForeignKey("bookings.id", use_alter=True, name="fk_transactions_booking_id"),
        nullable=True,
        index=True,
    )

    reason = Column(Text, nullable=True)
    reject_reason = Column(String(500), nullable=True)
    approved_by_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

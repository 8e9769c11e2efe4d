"""
Wallet Model - cached balance aggregate per owner

The ledger (``transactions``) is the source of truth; these totals are a
performance cache that every ledger mutation updates in the same unit.
Exactly one active wallet may exist per owner.
"""
import enum
from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    DateTime,
    ForeignKey,
    CheckConstraint,
    Index,
    text,
)
from sqlalchemy.orm import relationship

from app.db.database import Base, str_enum, utcnow


class WalletStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


# Aggregate columns the projector is allowed to touch
WALLET_TOTAL_FIELDS = (
    "total_balance",
    "total_recharge",
    "total_deposit",
    "total_pending",
    "total_withdraw",
    "total_spend",
    "total_refunded",
)

_ACTIVE_ONLY = text("status = 'active'")


class Wallet(Base):
    """Balance aggregate owned by exactly one customer or one model"""

    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint(
            "(customer_id IS NULL) <> (model_id IS NULL)",
            name="ck_wallets_single_owner",
        ),
        CheckConstraint("total_balance >= 0", name="ck_wallets_balance_non_negative"),
        CheckConstraint("total_pending >= 0", name="ck_wallets_pending_non_negative"),
        Index(
            "uq_wallets_active_customer",
            "customer_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index(
            "uq_wallets_active_model",
            "model_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    model_id = Column(Integer, ForeignKey("models.id"), nullable=True, index=True)

    total_balance = Column(BigInteger, default=0, nullable=False)
    total_recharge = Column(BigInteger, default=0, nullable=False)
    total_deposit = Column(BigInteger, default=0, nullable=False)
    total_pending = Column(BigInteger, default=0, nullable=False)
    total_withdraw = Column(BigInteger, default=0, nullable=False)
    total_spend = Column(BigInteger, default=0, nullable=False)
    total_refunded = Column(BigInteger, default=0, nullable=False)

    status = Column(str_enum(WalletStatus), default=WalletStatus.ACTIVE, nullable=False)
    updated_by_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer")
    model = relationship("MarketplaceModel")

    @property
    def is_model_wallet(self) -> bool:
        return self.model_id is not None

    @property
    def available_balance(self) -> int:
        """Spendable (customer) or withdrawable (model) funds, never stored"""
        if self.is_model_wallet:
            return (self.total_balance or 0) - (self.total_withdraw or 0)
        return (
            (self.total_balance or 0)
            - (self.total_spend or 0)
            + (self.total_refunded or 0)
        )

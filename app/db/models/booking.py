"""
Booking Model - escrow lifecycle of a single paid booking
"""
import enum
from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    DateTime,
    ForeignKey,
    Text,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from app.db.database import Base, str_enum, utcnow


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class DisputeResolution(str, enum.Enum):
    RELEASED = "released"
    REFUNDED = "refunded"


TERMINAL_BOOKING_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})


class Booking(Base):
    """Customer booking of a model's service, paid through escrow"""

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("price > 0", name="ck_bookings_price_positive"),
        CheckConstraint(
            "commission_rate_snapshot IS NULL OR "
            "(commission_rate_snapshot >= 0 AND commission_rate_snapshot <= 100)",
            name="ck_bookings_rate_snapshot_range",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    model_id = Column(Integer, ForeignKey("models.id"), nullable=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=True)

    price = Column(BigInteger, nullable=False)
    commission_rate_snapshot = Column(Integer, nullable=True)

    status = Column(
        str_enum(BookingStatus), default=BookingStatus.PENDING, nullable=False, index=True
    )
    payment_status = Column(
        str_enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )

    hold_transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)
    release_transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)

    # Dispute
    dispute_reason = Column(Text, nullable=True)
    disputed_at = Column(DateTime, nullable=True)
    dispute_resolution = Column(str_enum(DisputeResolution), nullable=True)
    dispute_resolved_at = Column(DateTime, nullable=True)

    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer")
    model = relationship("MarketplaceModel")
    service = relationship("Service")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BOOKING_STATUSES

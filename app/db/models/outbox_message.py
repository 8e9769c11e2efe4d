"""
Outbox Message Model - Transactional Outbox Pattern for notification intents
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, JSON

from app.db.database import Base, str_enum, utcnow


class RecipientType(str, enum.Enum):
    CUSTOMER = "customer"
    MODEL = "model"


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class OutboxMessage(Base):
    """Pending notifications with retry tracking"""

    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, index=True)

    kind = Column(String(64), nullable=False)  # e.g. "booking_released", "transaction_approved"
    recipient_type = Column(str_enum(RecipientType), nullable=False)
    recipient_id = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=False)

    status = Column(str_enum(MessageStatus), default=MessageStatus.PENDING, index=True)
    retry_count = Column(Integer, default=0)
    max_retries = Column(Integer, default=3)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)

    # Error tracking
    last_error = Column(String(1000), nullable=True)

"""
Marketplace Model - the earning side of a booking

A model may have been referred by another model. ``referral_reward_paid``
guards the one-time signup bonus; ``tier`` decides the per-booking referral
commission the referrer earns.
"""
import enum
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from app.db.database import Base, str_enum, utcnow


class ModelTier(str, enum.Enum):
    NORMAL = "normal"
    SPECIAL = "special"
    PARTNER = "partner"


class ModelStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class MarketplaceModel(Base):
    """Model profile with referral bookkeeping"""

    __tablename__ = "models"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    whatsapp = Column(String(20), nullable=True)

    tier = Column(str_enum(ModelTier), default=ModelTier.NORMAL, nullable=False)
    status = Column(str_enum(ModelStatus), default=ModelStatus.PENDING, nullable=False, index=True)

    referred_by_id = Column(Integer, ForeignKey("models.id"), nullable=True, index=True)
    referral_reward_paid = Column(Boolean, default=False, nullable=False)
    # Cached counters, recomputed from source rows when it matters
    total_referred_models = Column(Integer, default=0, nullable=False)
    total_referral_earnings = Column(BigInteger, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    referred_by = relationship("MarketplaceModel", remote_side=[id])

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

"""
Service Model - bookable service with the platform commission rate
"""
from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint

from app.db.database import Base, utcnow


class Service(Base):
    """A bookable service; ``commission_rate`` is a whole percentage"""

    __tablename__ = "services"
    __table_args__ = (
        CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100",
            name="ck_services_commission_rate_range",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    commission_rate = Column(Integer, default=10, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

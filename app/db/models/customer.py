"""
Customer Model - people who book models
"""
from sqlalchemy import Column, Integer, String, DateTime

from app.db.database import Base, utcnow


class Customer(Base):
    """Customer account (wallet is created at signup)"""

    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    whatsapp = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

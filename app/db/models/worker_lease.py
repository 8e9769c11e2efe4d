"""
Worker Lease Model - named claim that grants one worker a periodic job
"""
from sqlalchemy import Column, String, DateTime

from app.db.database import Base, utcnow


class WorkerLease(Base):
    __tablename__ = "worker_leases"

    name = Column(String(100), primary_key=True)
    holder = Column(String(200), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

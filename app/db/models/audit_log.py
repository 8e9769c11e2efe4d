"""
Audit Log Model - immutable record of administrative money actions

Written after the financial unit commits (or after it rolls back, with
status "failed"), never inside it.
"""
import enum
from sqlalchemy import Column, Integer, DateTime, String, Text
from sqlalchemy.types import JSON

from app.db.database import Base, str_enum, utcnow


class AuditStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


class AuditLog(Base):
    """Who did what to which booking, wallet or transaction"""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    actor_id = Column(String(64), nullable=True, index=True)
    description = Column(Text, nullable=True)
    status = Column(str_enum(AuditStatus), nullable=False, default=AuditStatus.SUCCESS)
    # Identifiers and amounts involved, plus the error on failure
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

"""
Database Models
"""
from app.db.models.customer import Customer
from app.db.models.marketplace_model import MarketplaceModel
from app.db.models.service import Service
from app.db.models.wallet import Wallet
from app.db.models.transaction import LedgerTransaction
from app.db.models.booking import Booking
from app.db.models.audit_log import AuditLog
from app.db.models.outbox_message import OutboxMessage
from app.db.models.worker_lease import WorkerLease

__all__ = [
    "Customer",
    "MarketplaceModel",
    "Service",
    "Wallet",
    "LedgerTransaction",
    "Booking",
    "AuditLog",
    "OutboxMessage",
    "WorkerLease",
]

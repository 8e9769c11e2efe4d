"""
Domain Services
"""
from app.domain.services.ledger_service import LedgerService
from app.domain.services.wallet_service import WalletService
from app.domain.services.booking_escrow_service import BookingEscrowService
from app.domain.services.referral_service import ReferralService
from app.domain.services.dispute_service import DisputeService
from app.domain.services.transaction_service import TransactionService
from app.domain.services.audit_service import AuditService
from app.domain.services.notification_service import NotificationService
from app.domain.services.outbox_service import OutboxService
from app.domain.services.lease_service import LeaseService

__all__ = [
    "LedgerService",
    "WalletService",
    "BookingEscrowService",
    "ReferralService",
    "DisputeService",
    "TransactionService",
    "AuditService",
    "NotificationService",
    "OutboxService",
    "LeaseService",
]

"""
Transaction Service - administrator approval of pending ledger requests

Recharges (customer top-ups) and withdrawals (model payouts) are created as
pending and only move money once an administrator approves them.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AlreadyResolvedError,
    ErrorCode,
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundException,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.models.outbox_message import RecipientType
from app.db.models.transaction import LedgerTransaction, TransactionKind, TransactionStatus
from app.domain.owner import OwnerRef
from app.domain.services.audit_service import AuditService
from app.domain.services.ledger_service import LedgerService
from app.domain.services.notification_service import NotificationKind, NotificationService
from app.domain.services.wallet_service import WalletService

logger = get_logger(__name__)

APPROVABLE_KINDS = (TransactionKind.RECHARGE, TransactionKind.WITHDRAWAL)


class TransactionService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)
        self.wallets = WalletService(db)
        self.audit = AuditService(db)
        self.notifications = NotificationService(db)

    async def get_transaction(self, transaction_id: int) -> LedgerTransaction:
        transaction = await self.ledger.get(transaction_id)
        if transaction is None:
            raise NotFoundException(
                "Transaction", transaction_id, ErrorCode.TRANSACTION_NOT_FOUND
            )
        return transaction

    @staticmethod
    def _owner(transaction: LedgerTransaction) -> OwnerRef:
        return OwnerRef(customer_id=transaction.customer_id, model_id=transaction.model_id)

    async def _swap(self, transaction_id: int, target: TransactionStatus, **patch) -> LedgerTransaction:
        try:
            return await self.ledger.transition(
                transaction_id, [TransactionStatus.PENDING], target, **patch
            )
        except InvalidTransitionError as e:
            if e.current_status == TransactionStatus.PENDING.value:
                raise
            raise AlreadyResolvedError("Transaction", transaction_id, e.current_status) from e

    async def approve_transaction(self, transaction_id: int, approver_id: str | None) -> LedgerTransaction:
        """Approve a pending recharge or withdrawal and apply it to the wallet"""
        try:
            transaction = await self.get_transaction(transaction_id)
            if transaction.kind not in APPROVABLE_KINDS:
                raise ValidationException(
                    f"Transactions of kind '{transaction.kind.value}' cannot be approved here",
                    field="kind",
                )
            owner = self._owner(transaction)
            amount = abs(transaction.amount)

            if transaction.kind == TransactionKind.RECHARGE:
                if owner.is_model:
                    raise ValidationException("Recharge must belong to a customer", field="customer_id")
                wallet = await self.wallets.ensure_wallet(owner, auto_create=False)
                await self._swap(
                    transaction_id, TransactionStatus.APPROVED, approved_by_id=approver_id
                )
                self.wallets.credit(wallet, "total_balance", amount)
                self.wallets.credit(wallet, "total_recharge", amount)
            else:
                if not owner.is_model:
                    raise ValidationException("Withdrawal must belong to a model", field="model_id")
                wallet = await self.wallets.ensure_wallet(owner)
                await self._swap(
                    transaction_id, TransactionStatus.APPROVED, approved_by_id=approver_id
                )
                available = wallet.available_balance
                if available < amount:
                    raise InsufficientFundsError(wallet.id, "available_balance", available, amount)
                self.wallets.credit(wallet, "total_withdraw", amount)

            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            await self.audit.record_failure(
                "approve_transaction", approver_id, e, {"transaction_id": transaction_id}
            )
            raise

        await self._after_decision(
            transaction, approver_id, "approve_transaction", NotificationKind.TRANSACTION_APPROVED
        )
        return transaction

    async def reject_transaction(
        self, transaction_id: int, approver_id: str | None, reject_reason: str
    ) -> LedgerTransaction:
        """Reject a pending request; no wallet changes"""
        try:
            transaction = await self._swap(
                transaction_id,
                TransactionStatus.REJECTED,
                approved_by_id=approver_id,
                reject_reason=reject_reason,
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            await self.audit.record_failure(
                "reject_transaction", approver_id, e, {"transaction_id": transaction_id}
            )
            raise

        await self._after_decision(
            transaction, approver_id, "reject_transaction", NotificationKind.TRANSACTION_REJECTED
        )
        return transaction

    async def _after_decision(
        self,
        transaction: LedgerTransaction,
        approver_id: str | None,
        action: str,
        kind: str,
    ) -> None:
        payload = {
            "transaction_id": transaction.id,
            "kind": transaction.kind.value,
            "amount": transaction.amount,
            "status": transaction.status.value,
            "reject_reason": transaction.reject_reason,
        }
        owner = self._owner(transaction)
        logger.info(
            f"Transaction {payload['status']}",
            extra_data={**payload, "approver_id": approver_id}
        )
        await self.audit.record_audit(
            action=action,
            actor_id=approver_id,
            description=f"Transaction {payload['transaction_id']} {payload['status']}",
            payload=payload,
        )
        if owner.is_model:
            await self.notifications.notify(kind, RecipientType.MODEL, owner.model_id, payload)
        else:
            await self.notifications.notify(kind, RecipientType.CUSTOMER, owner.customer_id, payload)

"""
Wallet Service - cached balance projection of the ledger

Every ledger mutation applies its wallet delta through ``credit`` / ``debit``
in the same unit; nothing here commits except ``suspend_wallet``, which is an
audited unit of its own.
"""
from dataclasses import dataclass, asdict

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ErrorCode,
    InsufficientFundsError,
    MissingWalletError,
    NotFoundException,
    ValidationException,
    WalletAlreadyActiveError,
)
from app.core.logging import get_logger
from app.db.models.transaction import TransactionKind, TransactionStatus
from app.db.models.wallet import Wallet, WalletStatus, WALLET_TOTAL_FIELDS
from app.domain.owner import OwnerRef
from app.domain.services.audit_service import AuditService
from app.domain.services.ledger_service import LedgerService

logger = get_logger(__name__)

# Fields that absorb over-debits instead of failing
_CLAMPED_FIELDS = frozenset({"total_pending"})

MODEL_EARNING_KINDS = (
    TransactionKind.BOOKING_EARNING,
    TransactionKind.BOOKING_REFERRAL,
    TransactionKind.SUBSCRIPTION_REFERRAL,
    TransactionKind.REFERRAL,
)
MODEL_EARNING_STATUSES = (TransactionStatus.APPROVED, TransactionStatus.RELEASED)
HOLD_SPEND_STATUSES = (
    TransactionStatus.HELD,
    TransactionStatus.RELEASED,
    TransactionStatus.REFUNDED,
)


@dataclass
class WalletSummary:
    """Ledger reconstruction of a wallet next to its cached totals"""

    wallet_id: int
    owner_type: str
    owner_id: int
    total_in: int
    total_out: int
    total_refunds: int
    available_balance: int
    cached_available_balance: int
    consistent: bool

    def to_dict(self) -> dict:
        return asdict(self)


class WalletService:
    """Service for owner wallets"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)
        self.audit = AuditService(db)

    async def _find_active(self, owner: OwnerRef, for_update: bool = True) -> Wallet | None:
        query = select(Wallet).where(
            owner.filter(Wallet), Wallet.status == WalletStatus.ACTIVE
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _has_suspended(self, owner: OwnerRef) -> bool:
        result = await self.db.execute(
            select(Wallet.id)
            .where(owner.filter(Wallet), Wallet.status == WalletStatus.SUSPENDED)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def ensure_wallet(self, owner: OwnerRef, auto_create: bool = True) -> Wallet:
        """
        Return the owner's active wallet, locked for the rest of the unit.

        A missing wallet is created with zero totals when ``auto_create`` is
        set. An owner whose only wallet is suspended never gets a fresh one.
        """
        wallet = await self._find_active(owner)
        if wallet:
            return wallet

        if await self._has_suspended(owner):
            raise MissingWalletError(str(owner), reason="wallet is suspended")
        if not auto_create:
            raise MissingWalletError(str(owner))

        return await self._insert_wallet(owner)

    async def create_wallet(self, owner: OwnerRef) -> Wallet:
        """Open a wallet for ``owner``; a second active wallet is rejected"""
        existing = await self._find_active(owner, for_update=False)
        if existing:
            raise WalletAlreadyActiveError(str(owner), existing.id)
        return await self._insert_wallet(owner)

    async def _insert_wallet(self, owner: OwnerRef) -> Wallet:
        wallet = Wallet(
            status=WalletStatus.ACTIVE,
            **{field: 0 for field in WALLET_TOTAL_FIELDS},
            **owner.as_columns(),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(wallet)
                await self.db.flush()
        except IntegrityError:
            # Lost the race against a concurrent insert for the same owner
            existing = await self._find_active(owner)
            if existing is None:
                raise
            return existing

        logger.info(
            "Wallet created",
            extra_data={"wallet_id": wallet.id, "owner": str(owner)}
        )
        return wallet

    @staticmethod
    def _check_delta(field: str, amount: int) -> None:
        if field not in WALLET_TOTAL_FIELDS:
            raise ValidationException(f"Unknown wallet field: {field}", field="field")
        if amount < 0:
            raise ValidationException(
                "Wallet delta must be non-negative", field="amount"
            )

    def credit(self, wallet: Wallet, field: str, amount: int) -> Wallet:
        """Increase one wallet total"""
        self._check_delta(field, amount)
        setattr(wallet, field, (getattr(wallet, field) or 0) + amount)
        return wallet

    def debit(self, wallet: Wallet, field: str, amount: int) -> Wallet:
        """Decrease one wallet total; ``total_pending`` clamps at zero"""
        self._check_delta(field, amount)
        current = getattr(wallet, field) or 0
        remaining = current - amount
        if remaining < 0:
            if field not in _CLAMPED_FIELDS:
                raise InsufficientFundsError(wallet.id, field, current, amount)
            logger.warning(
                "Wallet field clamped at zero",
                extra_data={
                    "wallet_id": wallet.id,
                    "field": field,
                    "current": current,
                    "requested": amount,
                }
            )
            remaining = 0
        setattr(wallet, field, remaining)
        return wallet

    async def get_wallet(self, wallet_id: int) -> Wallet:
        result = await self.db.execute(select(Wallet).where(Wallet.id == wallet_id))
        wallet = result.scalar_one_or_none()
        if not wallet:
            raise NotFoundException("Wallet", wallet_id, ErrorCode.WALLET_NOT_FOUND)
        return wallet

    async def suspend_wallet(self, wallet_id: int, actor_id: str | None = None) -> Wallet:
        """Suspend a wallet so no further movements can use it"""
        try:
            result = await self.db.execute(
                select(Wallet).where(Wallet.id == wallet_id).with_for_update()
            )
            wallet = result.scalar_one_or_none()
            if not wallet:
                raise NotFoundException("Wallet", wallet_id, ErrorCode.WALLET_NOT_FOUND)

            previous_status = wallet.status
            wallet.status = WalletStatus.SUSPENDED
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            await self.audit.record_failure("suspend_wallet", actor_id, e, {"wallet_id": wallet_id})
            raise

        await self.db.refresh(wallet)
        logger.info(
            "Wallet suspended",
            extra_data={"wallet_id": wallet_id, "actor_id": actor_id}
        )
        await self.audit.record_audit(
            action="suspend_wallet",
            actor_id=actor_id,
            description=f"Wallet {wallet_id} suspended",
            payload={
                "wallet_id": wallet_id,
                "owner": str(OwnerRef(customer_id=wallet.customer_id, model_id=wallet.model_id)),
                "previous_status": previous_status.value,
            },
        )
        return wallet

    async def get_wallet_summary(self, wallet_id: int) -> WalletSummary:
        """Rebuild the available balance from approved ledger rows"""
        wallet = await self.get_wallet(wallet_id)
        owner = OwnerRef(customer_id=wallet.customer_id, model_id=wallet.model_id)

        if owner.is_model:
            total_in = await self.ledger.sum_by_owner_and_kind(
                owner, MODEL_EARNING_KINDS, MODEL_EARNING_STATUSES
            )
            total_out = await self.ledger.sum_by_owner_and_kind(
                owner, [TransactionKind.WITHDRAWAL], [TransactionStatus.APPROVED]
            )
            total_refunds = 0
            available = total_in - total_out
        else:
            total_in = await self.ledger.sum_by_owner_and_kind(
                owner, [TransactionKind.RECHARGE], [TransactionStatus.APPROVED]
            )
            subscriptions = await self.ledger.sum_by_owner_and_kind(
                owner, [TransactionKind.SUBSCRIPTION], [TransactionStatus.APPROVED]
            )
            holds = await self.ledger.sum_by_owner_and_kind(
                owner, [TransactionKind.BOOKING_HOLD], HOLD_SPEND_STATUSES
            )
            total_out = subscriptions + holds
            total_refunds = await self.ledger.sum_by_owner_and_kind(
                owner, [TransactionKind.BOOKING_REFUND], [TransactionStatus.APPROVED]
            )
            available = total_in - total_out + total_refunds

        cached = wallet.available_balance
        if cached != available:
            logger.warning(
                "Wallet cache disagrees with ledger",
                extra_data={
                    "wallet_id": wallet.id,
                    "cached_available": cached,
                    "ledger_available": available,
                }
            )

        return WalletSummary(
            wallet_id=wallet.id,
            owner_type="model" if owner.is_model else "customer",
            owner_id=owner.model_id if owner.is_model else owner.customer_id,
            total_in=total_in,
            total_out=total_out,
            total_refunds=total_refunds,
            available_balance=available,
            cached_available_balance=cached,
            consistent=cached == available,
        )

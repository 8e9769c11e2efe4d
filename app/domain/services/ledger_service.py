"""
Ledger Service - append-only store of monetary movements

Status changes go through ``transition``: a single conditional UPDATE that
only matches while the row is still in one of the expected statuses. Two
administrators racing on the same hold therefore cannot both win.
"""
from datetime import datetime
from typing import Iterable

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ErrorCode,
    InvalidTransitionError,
    NotFoundException,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.transaction import (
    LedgerTransaction,
    TransactionKind,
    TransactionStatus,
    is_legal_transition,
)
from app.domain.owner import OwnerRef

logger = get_logger(__name__)

# Columns a transition may patch besides status
_PATCHABLE_FIELDS = frozenset({"reason", "reject_reason", "approved_by_id"})


class LedgerService:
    """Append and transition ledger transactions; never deletes"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        *,
        kind: TransactionKind,
        amount: int,
        status: TransactionStatus,
        owner: OwnerRef,
        booking_id: int | None = None,
        commission: int = 0,
        fee: int = 0,
        reason: str | None = None,
        approved_by_id: str | None = None,
    ) -> LedgerTransaction:
        """Add a transaction to the current unit and flush to obtain its id"""
        if commission < 0 or fee < 0:
            raise ValidationException(
                "Commission and fee must be non-negative",
                fields={"commission": "must be >= 0", "fee": "must be >= 0"},
            )

        entry = LedgerTransaction(
            kind=kind,
            amount=amount,
            commission=commission,
            fee=fee,
            status=status,
            booking_id=booking_id,
            reason=reason,
            approved_by_id=approved_by_id,
            **owner.as_columns(),
        )
        self.db.add(entry)
        await self.db.flush()

        logger.debug(
            "Ledger transaction appended",
            extra_data={
                "transaction_id": entry.id,
                "kind": kind.value,
                "status": status.value,
                "amount": amount,
                "booking_id": booking_id,
            }
        )
        return entry

    async def transition(
        self,
        transaction_id: int,
        from_statuses: Iterable[TransactionStatus],
        to_status: TransactionStatus,
        **patch,
    ) -> LedgerTransaction:
        """
        Compare-and-swap the status of one transaction.

        Raises NotFoundException when the row does not exist and
        InvalidTransitionError when its status is not in ``from_statuses``.
        Nothing is written in either case.
        """
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValidationException(
                f"Fields cannot be patched on transition: {sorted(unknown)}"
            )
        from_statuses = list(from_statuses)

        current = await self.get(transaction_id)
        if current is None:
            raise NotFoundException(
                "Transaction", transaction_id, ErrorCode.TRANSACTION_NOT_FOUND
            )
        # kind never changes, so the lifecycle check is safe before the swap
        if not any(is_legal_transition(current.kind, s, to_status) for s in from_statuses):
            raise InvalidTransitionError(
                transaction_id=transaction_id,
                current_status=current.status.value,
                expected=[s.value for s in from_statuses],
                target=to_status.value,
            )

        result = await self.db.execute(
            update(LedgerTransaction)
            .where(
                LedgerTransaction.id == transaction_id,
                LedgerTransaction.status.in_(from_statuses),
            )
            .values(status=to_status, updated_at=utcnow(), **patch)
            .execution_options(synchronize_session="fetch")
        )

        await self.db.refresh(current)
        if result.rowcount != 1:
            raise InvalidTransitionError(
                transaction_id=transaction_id,
                current_status=current.status.value,
                expected=[s.value for s in from_statuses],
                target=to_status.value,
            )
        return current

    async def get(self, transaction_id: int) -> LedgerTransaction | None:
        result = await self.db.execute(
            select(LedgerTransaction).where(LedgerTransaction.id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def get_for_booking(
        self, booking_id: int, kind: TransactionKind
    ) -> LedgerTransaction | None:
        result = await self.db.execute(
            select(LedgerTransaction).where(
                LedgerTransaction.booking_id == booking_id,
                LedgerTransaction.kind == kind,
            )
        )
        return result.scalar_one_or_none()

    async def sum_by_owner_and_kind(
        self,
        owner: OwnerRef,
        kinds: Iterable[TransactionKind],
        statuses: Iterable[TransactionStatus],
        date_range: tuple[datetime, datetime] | None = None,
    ) -> int:
        """SUM(ABS(amount)) over the owner's matching transactions"""
        query = select(func.coalesce(func.sum(func.abs(LedgerTransaction.amount)), 0)).where(
            owner.filter(LedgerTransaction),
            LedgerTransaction.kind.in_(list(kinds)),
            LedgerTransaction.status.in_(list(statuses)),
        )
        if date_range is not None:
            start, end = date_range
            query = query.where(
                LedgerTransaction.created_at >= start,
                LedgerTransaction.created_at <= end,
            )
        result = await self.db.execute(query)
        return int(result.scalar_one())

"""
Ledger Transaction API Routes
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import get_admin_id, require_admin_api_key
from app.db.database import get_db
from app.db.models.transaction import TransactionKind, TransactionStatus
from app.domain.services.transaction_service import TransactionService

router = APIRouter()


class TransactionResponse(BaseModel):
    id: int
    kind: TransactionKind
    amount: int
    commission: int
    fee: int
    status: TransactionStatus
    customer_id: int | None
    model_id: int | None
    booking_id: int | None
    reason: str | None
    reject_reason: str | None
    approved_by_id: str | None
    created_at: datetime | None

    class Config:
        from_attributes = True
        protected_namespaces = ()


class RejectRequest(BaseModel):
    reject_reason: str = Field(..., min_length=1, max_length=500)


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get ledger transaction",
    dependencies=[Depends(require_admin_api_key)],
)
async def get_transaction(transaction_id: int, db: AsyncSession = Depends(get_db)):
    service = TransactionService(db)
    return await service.get_transaction(transaction_id)


@router.post(
    "/{transaction_id}/approve",
    response_model=TransactionResponse,
    summary="Approve pending recharge or withdrawal",
)
async def approve_transaction(
    transaction_id: int,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    service = TransactionService(db)
    return await service.approve_transaction(transaction_id, admin_id)


@router.post(
    "/{transaction_id}/reject",
    response_model=TransactionResponse,
    summary="Reject pending transaction",
)
async def reject_transaction(
    transaction_id: int,
    body: RejectRequest,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    service = TransactionService(db)
    return await service.reject_transaction(transaction_id, admin_id, body.reject_reason)

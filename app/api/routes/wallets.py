"""
Wallet API Routes
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import get_admin_id, require_admin_api_key
from app.db.database import get_db
from app.db.models.wallet import WalletStatus
from app.domain.services.wallet_service import WalletService

router = APIRouter()


class WalletResponse(BaseModel):
    id: int
    customer_id: int | None
    model_id: int | None
    status: WalletStatus
    total_balance: int
    total_recharge: int
    total_deposit: int
    total_pending: int
    total_withdraw: int
    total_spend: int
    total_refunded: int
    available_balance: int

    class Config:
        from_attributes = True
        protected_namespaces = ()


class WalletSummaryResponse(BaseModel):
    wallet_id: int
    owner_type: str
    owner_id: int
    total_in: int
    total_out: int
    total_refunds: int
    available_balance: int
    cached_available_balance: int
    consistent: bool


@router.get(
    "/{wallet_id}",
    response_model=WalletResponse,
    summary="Get wallet",
    dependencies=[Depends(require_admin_api_key)],
)
async def get_wallet(wallet_id: int, db: AsyncSession = Depends(get_db)):
    service = WalletService(db)
    return await service.get_wallet(wallet_id)


@router.get(
    "/{wallet_id}/summary",
    response_model=WalletSummaryResponse,
    summary="Reconcile wallet against the ledger",
    description="Rebuilds the available balance from ledger transactions and compares it with the cached wallet totals.",
    dependencies=[Depends(require_admin_api_key)],
)
async def get_wallet_summary(wallet_id: int, db: AsyncSession = Depends(get_db)):
    service = WalletService(db)
    summary = await service.get_wallet_summary(wallet_id)
    return summary.to_dict()


@router.post(
    "/{wallet_id}/suspend",
    response_model=WalletResponse,
    summary="Suspend wallet",
)
async def suspend_wallet(
    wallet_id: int,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    service = WalletService(db)
    return await service.suspend_wallet(wallet_id, admin_id)

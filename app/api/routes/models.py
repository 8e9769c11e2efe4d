"""
Model Referral API Routes
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import get_admin_id
from app.db.database import get_db
from app.domain.services.referral_service import ReferralService

router = APIRouter()


class ReferralRewardResponse(BaseModel):
    model_id: int
    rewarded: bool
    referrer_id: int | None
    amount: int
    referral_count: int
    upgraded_to: str | None
    transaction_id: int | None
    skipped_reason: str | None

    class Config:
        protected_namespaces = ()


@router.post(
    "/{model_id}/referral-reward",
    response_model=ReferralRewardResponse,
    summary="Settle signup referral reward",
    description="Pays the referrer's one-time bonus for an approved model and upgrades the referrer tier when due.",
)
async def process_referral_reward(
    model_id: int,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    service = ReferralService(db)
    result = await service.process_referral_reward(model_id, admin_id)
    return ReferralRewardResponse(
        model_id=model_id,
        rewarded=result.rewarded,
        referrer_id=result.referrer_id,
        amount=result.amount,
        referral_count=result.referral_count,
        upgraded_to=result.upgraded_to,
        transaction_id=result.transaction.id if result.transaction else None,
        skipped_reason=result.skipped_reason,
    )

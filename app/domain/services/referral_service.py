"""
Referral Service - rewards for models who bring other models

Two payouts exist:

1. Booking referral commission: when a referred model's booking is released,
   an eligible referrer earns a percentage of the gross booking price. It runs
   inside the release unit (in a savepoint) and never commits on its own.
2. Signup referral reward: a flat bonus when a referred model is approved,
   paid while the referrer is still within the referral threshold. The
   referrer is upgraded from normal to special once the threshold is reached.
"""
from dataclasses import dataclass

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AlreadyResolvedError,
    NotFoundException,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.marketplace_model import MarketplaceModel, ModelStatus, ModelTier
from app.db.models.transaction import LedgerTransaction, TransactionKind, TransactionStatus
from app.domain.owner import OwnerRef
from app.domain.services.audit_service import AuditService
from app.domain.services.commission import percent_of
from app.domain.services.ledger_service import LedgerService
from app.domain.services.notification_service import NotificationKind, NotificationService
from app.domain.services.wallet_service import WalletService

logger = get_logger(__name__)


@dataclass
class ReferralCommissionResult:
    paid: bool
    referrer_id: int | None = None
    amount: int = 0
    rate_percent: int = 0
    transaction: LedgerTransaction | None = None
    skipped_reason: str | None = None


@dataclass
class ReferralRewardResult:
    rewarded: bool
    referrer_id: int | None = None
    amount: int = 0
    referral_count: int = 0
    upgraded_to: str | None = None
    transaction: LedgerTransaction | None = None
    skipped_reason: str | None = None


class ReferralService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)
        self.wallets = WalletService(db)
        self.audit = AuditService(db)
        self.notifications = NotificationService(db)

    async def _get_model(self, model_id: int, for_update: bool = False) -> MarketplaceModel | None:
        query = select(MarketplaceModel).where(MarketplaceModel.id == model_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    def booking_commission_rate(referrer: MarketplaceModel) -> int | None:
        """Percent of a referred booking the referrer earns, or None if not eligible"""
        if referrer.tier not in (ModelTier.SPECIAL, ModelTier.PARTNER):
            return None
        if (referrer.total_referred_models or 0) < settings.MIN_REFERRED_MODELS_FOR_COMMISSION:
            return None
        if referrer.tier == ModelTier.PARTNER:
            if (referrer.total_referral_earnings or 0) < settings.MIN_EARNINGS_FOR_PARTNER_COMMISSION:
                return None
            return settings.BOOKING_REFERRAL_RATE_PARTNER_PERCENT
        return settings.BOOKING_REFERRAL_RATE_SPECIAL_PERCENT

    async def process_booking_referral_commission(
        self,
        booked_model_id: int,
        booking_price: int,
        booking_id: int,
        approver_id: str | None = None,
    ) -> ReferralCommissionResult:
        """
        Pay the referrer of ``booked_model_id`` their cut of a released booking.

        Must run inside the caller's unit. Skips (without error) when there is
        no eligible referrer, the amount rounds to zero, or this booking has
        already paid a referral commission.
        """
        booked_model = await self._get_model(booked_model_id)
        if booked_model is None or booked_model.referred_by_id is None:
            return ReferralCommissionResult(paid=False, skipped_reason="no_referrer")

        referrer = await self._get_model(booked_model.referred_by_id, for_update=True)
        if referrer is None:
            return ReferralCommissionResult(paid=False, skipped_reason="referrer_missing")

        rate = self.booking_commission_rate(referrer)
        if rate is None:
            return ReferralCommissionResult(
                paid=False, referrer_id=referrer.id, skipped_reason="not_eligible"
            )

        amount = percent_of(booking_price, rate)
        if amount == 0:
            return ReferralCommissionResult(
                paid=False, referrer_id=referrer.id, rate_percent=rate,
                skipped_reason="zero_amount",
            )

        existing = await self.ledger.get_for_booking(booking_id, TransactionKind.BOOKING_REFERRAL)
        if existing is not None:
            return ReferralCommissionResult(
                paid=False, referrer_id=referrer.id, rate_percent=rate,
                transaction=existing, skipped_reason="already_paid",
            )

        owner = OwnerRef.for_model(referrer.id)
        transaction = await self.ledger.append(
            kind=TransactionKind.BOOKING_REFERRAL,
            amount=amount,
            status=TransactionStatus.APPROVED,
            owner=owner,
            booking_id=booking_id,
            reason=f"{rate}% referral commission on booking #{booking_id}",
            approved_by_id=approver_id,
        )
        wallet = await self.wallets.ensure_wallet(owner)
        self.wallets.credit(wallet, "total_balance", amount)
        referrer.total_referral_earnings = (referrer.total_referral_earnings or 0) + amount

        logger.info(
            "Booking referral commission paid",
            extra_data={
                "booking_id": booking_id,
                "referrer_id": referrer.id,
                "tier": referrer.tier.value,
                "rate_percent": rate,
                "amount": amount,
                "transaction_id": transaction.id,
            }
        )
        return ReferralCommissionResult(
            paid=True,
            referrer_id=referrer.id,
            amount=amount,
            rate_percent=rate,
            transaction=transaction,
        )

    async def _count_active_referrals(self, referrer_id: int) -> int:
        result = await self.db.execute(
            select(func.count(MarketplaceModel.id)).where(
                MarketplaceModel.referred_by_id == referrer_id,
                MarketplaceModel.status == ModelStatus.ACTIVE,
            )
        )
        return int(result.scalar_one())

    async def process_referral_reward(self, model_id: int, admin_id: str) -> ReferralRewardResult:
        """Settle the signup referral of an approved model exactly once"""
        try:
            result = await self._apply_referral_reward(model_id, admin_id)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            await self.audit.record_failure(
                "process_referral_reward", admin_id, e, {"model_id": model_id}
            )
            raise

        if result.referrer_id is None:
            return result

        await self.audit.record_audit(
            action="process_referral_reward",
            actor_id=admin_id,
            description=(
                f"Referral of model {model_id} recorded for referrer {result.referrer_id}"
                + (f", bonus {result.amount}" if result.rewarded else ", no bonus")
            ),
            payload={
                "model_id": model_id,
                "referrer_id": result.referrer_id,
                "amount": result.amount,
                "referral_count": result.referral_count,
                "upgraded_to": result.upgraded_to,
                "transaction_id": result.transaction.id if result.transaction else None,
            },
        )
        await self.notifications.notify_model(
            NotificationKind.REFERRAL_REWARD,
            result.referrer_id,
            {
                "referred_model_id": model_id,
                "amount": result.amount,
                "bonus_paid": result.rewarded,
                "referral_count": result.referral_count,
                "upgraded_to": result.upgraded_to,
            },
        )
        return result

    async def _apply_referral_reward(self, model_id: int, admin_id: str) -> ReferralRewardResult:
        model = await self._get_model(model_id)
        if model is None:
            raise NotFoundException("Model", model_id)
        if model.referred_by_id is None:
            return ReferralRewardResult(rewarded=False, skipped_reason="no_referrer")
        if model.status != ModelStatus.ACTIVE:
            raise ValidationException(
                "Referral reward requires an approved model", field="status"
            )

        claimed = await self.db.execute(
            update(MarketplaceModel)
            .where(
                MarketplaceModel.id == model_id,
                MarketplaceModel.referral_reward_paid.is_(False),
            )
            .values(referral_reward_paid=True, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        if claimed.rowcount != 1:
            raise AlreadyResolvedError("Model referral reward", model_id)

        referrer = await self._get_model(model.referred_by_id, for_update=True)
        if referrer is None:
            raise NotFoundException("Model", model.referred_by_id)

        threshold = settings.MIN_REFERRED_MODELS_FOR_COMMISSION
        count = await self._count_active_referrals(referrer.id)
        referrer.total_referred_models = count

        upgraded_to = None
        if referrer.tier == ModelTier.NORMAL and count >= threshold:
            referrer.tier = ModelTier.SPECIAL
            upgraded_to = ModelTier.SPECIAL.value
            logger.info(
                "Referrer upgraded",
                extra_data={"referrer_id": referrer.id, "referral_count": count, "tier": upgraded_to}
            )

        if count > threshold:
            return ReferralRewardResult(
                rewarded=False,
                referrer_id=referrer.id,
                referral_count=count,
                upgraded_to=upgraded_to,
                skipped_reason="past_threshold",
            )

        amount = settings.REFERRAL_REWARD_AMOUNT
        owner = OwnerRef.for_model(referrer.id)
        transaction = await self.ledger.append(
            kind=TransactionKind.REFERRAL,
            amount=amount,
            status=TransactionStatus.APPROVED,
            owner=owner,
            reason=f"Referral reward for inviting model {model_id}",
            approved_by_id=admin_id,
        )
        wallet = await self.wallets.ensure_wallet(owner)
        self.wallets.credit(wallet, "total_balance", amount)
        self.wallets.credit(wallet, "total_recharge", amount)
        referrer.total_referral_earnings = (referrer.total_referral_earnings or 0) + amount

        return ReferralRewardResult(
            rewarded=True,
            referrer_id=referrer.id,
            amount=amount,
            referral_count=count,
            upgraded_to=upgraded_to,
            transaction=transaction,
        )

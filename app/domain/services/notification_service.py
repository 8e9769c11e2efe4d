"""
Notification Service - fire-and-forget notification intents

Intents are written to the outbox after the financial unit has committed.
Failing to queue one is logged; the money movement stands.
"""
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.models.outbox_message import OutboxMessage, RecipientType
from app.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)


class NotificationKind:
    BOOKING_HOLD_PLACED = "booking_hold_placed"
    BOOKING_DISPUTED = "booking_disputed"
    BOOKING_RELEASED = "booking_released"
    BOOKING_REFUNDED = "booking_refunded"
    REFERRAL_COMMISSION = "referral_commission"
    REFERRAL_REWARD = "referral_reward"
    TRANSACTION_APPROVED = "transaction_approved"
    TRANSACTION_REJECTED = "transaction_rejected"


class NotificationService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.outbox = OutboxService(db)

    async def notify(
        self,
        kind: str,
        recipient_type: RecipientType,
        recipient_id: int | None,
        payload: dict[str, Any],
    ) -> OutboxMessage | None:
        """Queue one notification in its own commit"""
        if recipient_id is None:
            return None
        try:
            message = await self.outbox.queue_message(
                kind=kind,
                recipient_type=recipient_type,
                recipient_id=recipient_id,
                payload=payload,
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                "Failed to queue notification",
                extra_data={
                    "kind": kind,
                    "recipient_type": recipient_type.value,
                    "recipient_id": recipient_id,
                    "error": str(e),
                }
            )
            return None
        return message

    async def notify_customer(self, kind: str, customer_id: int | None, payload: dict) -> OutboxMessage | None:
        return await self.notify(kind, RecipientType.CUSTOMER, customer_id, payload)

    async def notify_model(self, kind: str, model_id: int | None, payload: dict) -> OutboxMessage | None:
        return await self.notify(kind, RecipientType.MODEL, model_id, payload)

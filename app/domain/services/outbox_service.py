"""
Outbox Service - Transactional Outbox Pattern for notification intents

Services queue notification rows; the Celery beat worker drains them to the
notification gateway with exponential backoff on failure.
"""
from __future__ import annotations

from datetime import timedelta
from typing import List

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.database import utcnow
from app.db.models.outbox_message import OutboxMessage, MessageStatus, RecipientType


def _calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    ``base_seconds * 2 ** retry_count`` capped at ``max_backoff_seconds``.

    The doubling stops as soon as the cap is reached, so a huge retry count
    never builds a huge integer.
    """
    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    backoff = base_seconds
    for _ in range(max(retry_count, 0)):
        if backoff >= max_backoff_seconds:
            break
        backoff *= 2
    return min(backoff, max_backoff_seconds)


class OutboxService:
    """Queue and track outbound notification messages"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def queue_message(
        self,
        kind: str,
        recipient_type: RecipientType,
        recipient_id: int,
        payload: dict,
    ) -> OutboxMessage:
        """Queue a single message for delivery (caller commits)"""
        message = OutboxMessage(
            kind=kind,
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            payload=payload,
            status=MessageStatus.PENDING,
            retry_count=0,
            max_retries=settings.OUTBOX_MAX_RETRIES,
        )
        self.db.add(message)
        return message

    async def get_pending_messages(self, limit: int = 100) -> List[OutboxMessage]:
        """Pending messages whose retry time has come, oldest first"""
        now = utcnow()
        result = await self.db.execute(
            select(OutboxMessage)
            .where(
                OutboxMessage.status == MessageStatus.PENDING,
                or_(
                    OutboxMessage.next_retry_at.is_(None),
                    OutboxMessage.next_retry_at <= now,
                ),
            )
            .order_by(OutboxMessage.created_at, OutboxMessage.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _get(self, message_id: int) -> OutboxMessage | None:
        result = await self.db.execute(
            select(OutboxMessage).where(OutboxMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def mark_as_processing(self, message_id: int) -> None:
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.PROCESSING
            await self.db.commit()

    async def mark_as_sent(self, message_id: int) -> None:
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.SENT
            message.processed_at = utcnow()
            await self.db.commit()

    async def mark_as_failed(self, message_id: int, error: str) -> None:
        """Count the failure and schedule a retry, or give up at max_retries"""
        message = await self._get(message_id)
        if not message:
            return

        message.retry_count = (message.retry_count or 0) + 1
        message.last_error = error[:1000]

        if message.retry_count >= message.max_retries:
            message.status = MessageStatus.FAILED
            message.processed_at = utcnow()
        else:
            message.status = MessageStatus.PENDING
            backoff_seconds = _calculate_backoff_seconds(
                message.retry_count,
                base_seconds=settings.OUTBOX_RETRY_BASE_SECONDS,
                max_backoff_seconds=settings.OUTBOX_MAX_BACKOFF_SECONDS,
            )
            message.next_retry_at = utcnow() + timedelta(seconds=backoff_seconds)

        await self.db.commit()

"""
Celery Tasks for Notification Delivery

Worker side of the Transactional Outbox pattern: pending notification intents
are posted to the notification gateway. Only the worker holding the outbox
lease drains the table, so overlapping beat ticks or a second worker process
never send the same message twice.
"""
from __future__ import annotations

import asyncio
import os
import socket
from contextlib import contextmanager
from datetime import timedelta

import httpx
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.workers.celery_app import celery_app
from app.core.config import settings
from app.core.logging import get_logger, log_async_operation, set_correlation_id
from app.db.database import get_task_session, utcnow
from app.db.models.outbox_message import OutboxMessage, MessageStatus
from app.domain.services.lease_service import LeaseService
from app.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)

OUTBOX_LEASE_NAME = "outbox-drain"


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


def _worker_identity() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


async def _send_notification(message: OutboxMessage) -> None:
    """POST one notification to the gateway; raises httpx.HTTPError on failure"""
    body = {
        "id": message.id,
        "kind": message.kind,
        "recipient_type": message.recipient_type.value,
        "recipient_id": message.recipient_id,
        "payload": message.payload,
    }
    async with httpx.AsyncClient(timeout=settings.NOTIFICATION_GATEWAY_TIMEOUT_SECONDS) as client:
        response = await client.post(
            f"{settings.NOTIFICATION_GATEWAY_URL}/notifications", json=body
        )
        response.raise_for_status()


async def _process_single_message(outbox: OutboxService, message: OutboxMessage) -> tuple[bool, str]:
    message_id = message.id
    await outbox.mark_as_processing(message_id)
    try:
        await _send_notification(message)
    except httpx.HTTPError as e:
        logger.warning(
            "Notification delivery failed",
            extra_data={"message_id": message_id, "kind": message.kind, "error": str(e)}
        )
        await outbox.mark_as_failed(message_id, str(e) or type(e).__name__)
        return False, str(e)

    await outbox.mark_as_sent(message_id)
    return True, "sent"


@log_async_operation("outbox_drain")
async def drain_outbox(db: AsyncSession, holder: str | None = None) -> list[dict]:
    """Send one batch of pending notifications if this worker wins the lease"""
    holder = holder or _worker_identity()
    leases = LeaseService(db)
    if not await leases.try_acquire(OUTBOX_LEASE_NAME, holder, settings.OUTBOX_LEASE_TTL_SECONDS):
        logger.info(
            "Outbox drain skipped, lease held by another worker",
            extra_data={"holder": holder}
        )
        return []

    try:
        outbox = OutboxService(db)
        messages = await outbox.get_pending_messages(limit=settings.OUTBOX_BATCH_SIZE)

        results = []
        for message in messages:
            success, detail = await _process_single_message(outbox, message)
            results.append({
                "message_id": message.id,
                "success": success,
                "result": detail
            })
        return results
    finally:
        await leases.release(OUTBOX_LEASE_NAME, holder)


@celery_app.task(name="app.workers.tasks.process_outbox_messages")
def process_outbox_messages():
    """
    Process pending messages from the outbox.
    This task runs periodically to ensure reliable message delivery.
    """

    async def _process():
        async with get_task_session() as db:
            return await drain_outbox(db)

    return run_async(_process())


@log_async_operation("outbox_cleanup")
async def delete_old_messages(db: AsyncSession, days: int = 30) -> int:
    cutoff = utcnow() - timedelta(days=days)
    result = await db.execute(
        delete(OutboxMessage).where(
            OutboxMessage.status == MessageStatus.SENT,
            OutboxMessage.processed_at < cutoff
        )
    )
    await db.commit()
    return result.rowcount


@celery_app.task(name="app.workers.tasks.cleanup_old_messages")
def cleanup_old_messages(days: int = 30):
    """Clean up old sent messages from the outbox"""

    async def _cleanup():
        async with get_task_session() as db:
            return {"deleted": await delete_old_messages(db, days)}

    return run_async(_cleanup())

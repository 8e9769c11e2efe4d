"""
Audit Service - post-commit audit trail for money actions

Audit writes run in their own small commit after the financial unit has
committed or rolled back. A failing audit write is logged and dropped; it
never replaces the outcome the caller is about to see.
"""
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.models.audit_log import AuditLog, AuditStatus

logger = get_logger(__name__)


class AuditService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_audit(
        self,
        action: str,
        actor_id: str | None,
        description: str,
        status: AuditStatus = AuditStatus.SUCCESS,
        payload: dict[str, Any] | None = None,
    ) -> AuditLog | None:
        entry = AuditLog(
            action=action,
            actor_id=actor_id,
            description=description,
            status=status,
            payload=payload or {},
        )
        try:
            self.db.add(entry)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                "Failed to write audit record",
                extra_data={
                    "action": action,
                    "actor_id": actor_id,
                    "audit_status": status.value,
                    "error": str(e),
                }
            )
            return None
        return entry

    async def record_failure(
        self,
        action: str,
        actor_id: str | None,
        error: Exception,
        payload: dict[str, Any] | None = None,
    ) -> AuditLog | None:
        """Audit a unit that rolled back; the session must already be clean"""
        return await self.record_audit(
            action=action,
            actor_id=actor_id,
            description=f"{action} failed: {error}",
            status=AuditStatus.FAILED,
            payload={
                **(payload or {}),
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )

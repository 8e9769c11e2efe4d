"""
Lease Service - at most one worker runs a named periodic job

A lease is a row in ``worker_leases``. Claiming it is a conditional UPDATE
that only matches when the lease is free, expired, or already ours, so two
worker processes cannot both hold it.
"""
from datetime import timedelta

from sqlalchemy import update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.worker_lease import WorkerLease

logger = get_logger(__name__)


class LeaseService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def try_acquire(self, name: str, holder: str, ttl_seconds: int) -> bool:
        """Claim ``name`` for ``holder`` until now + ttl; False when held elsewhere"""
        now = utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)

        result = await self.db.execute(
            update(WorkerLease)
            .where(
                WorkerLease.name == name,
                or_(
                    WorkerLease.holder.is_(None),
                    WorkerLease.holder == holder,
                    WorkerLease.expires_at.is_(None),
                    WorkerLease.expires_at < now,
                ),
            )
            .values(holder=holder, expires_at=expires_at, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await self.db.commit()
            return True

        try:
            async with self.db.begin_nested():
                self.db.add(WorkerLease(name=name, holder=holder, expires_at=expires_at))
        except IntegrityError:
            # Row exists and is held by someone else
            await self.db.rollback()
            logger.debug(
                "Lease busy",
                extra_data={"lease": name, "holder": holder}
            )
            return False

        await self.db.commit()
        return True

    async def release(self, name: str, holder: str) -> None:
        """Give the lease back early; only the current holder can"""
        await self.db.execute(
            update(WorkerLease)
            .where(WorkerLease.name == name, WorkerLease.holder == holder)
            .values(holder=None, expires_at=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

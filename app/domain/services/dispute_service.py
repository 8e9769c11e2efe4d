"""
Dispute Service - settles a disputed booking in favor of one side

A resolution reuses the escrow release or refund mutations, so a disputed
booking settles with exactly the same ledger entries and wallet deltas as an
undisputed one. Only one resolution can ever win: the booking must still be
``disputed`` under its row lock, and the hold transaction swap rejects a
second settlement.
"""
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidStateError, ValidationException
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.booking import Booking, BookingStatus, DisputeResolution
from app.domain.services.booking_escrow_service import (
    BookingEscrowService,
    RefundResult,
    ReleaseResult,
)

logger = get_logger(__name__)


@dataclass
class DisputeResult:
    booking: Booking
    resolution: DisputeResolution
    release: ReleaseResult | None = None
    refund: RefundResult | None = None


def parse_resolution(resolution) -> DisputeResolution:
    try:
        return DisputeResolution(resolution)
    except ValueError:
        raise ValidationException(
            f"Invalid dispute resolution: {resolution}",
            field="resolution",
            details={"allowed": [r.value for r in DisputeResolution]},
        )


class DisputeService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.escrow = BookingEscrowService(db)

    async def resolve_dispute(
        self,
        booking_id: int,
        approver_id: str | None,
        resolution: DisputeResolution | str,
    ) -> DisputeResult:
        """Release to the model or refund the customer for a disputed booking"""
        try:
            chosen = parse_resolution(resolution)
            booking = await self.escrow.get_booking(booking_id, for_update=True)
            if booking.status != BookingStatus.DISPUTED:
                raise InvalidStateError(
                    booking.id, booking.status.value, BookingStatus.DISPUTED.value
                )
            missing = {
                name: f"booking has no {name}"
                for name in ("customer_id", "model_id")
                if getattr(booking, name) is None
            }
            if missing:
                raise ValidationException("Booking is incomplete", fields=missing)

            result = DisputeResult(booking=booking, resolution=chosen)
            if chosen == DisputeResolution.RELEASED:
                result.release = await self.escrow.apply_release(
                    booking,
                    approver_id,
                    reason=f"Dispute on booking #{booking.id} resolved for the model",
                )
            else:
                result.refund = await self.escrow.apply_refund(
                    booking,
                    approver_id,
                    reason=f"Dispute on booking #{booking.id} resolved for the customer",
                )

            booking.dispute_resolution = chosen
            booking.dispute_resolved_at = utcnow()
            await self.db.commit()
        except Exception as e:
            await self.escrow.abort_unit(
                "resolve_dispute",
                approver_id,
                e,
                {"booking_id": booking_id, "resolution": str(resolution)},
            )
            raise

        logger.info(
            "Dispute resolved",
            extra_data={"booking_id": booking_id, "resolution": chosen.value}
        )
        if result.release is not None:
            await self.escrow.publish_release(result.release, approver_id, action="resolve_dispute")
        else:
            await self.escrow.publish_refund(result.refund, approver_id, action="resolve_dispute")
        return result

"""
Booking Escrow API Routes
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import get_admin_id, require_admin_api_key
from app.db.database import get_db
from app.db.models.booking import BookingStatus, DisputeResolution, PaymentStatus
from app.domain.services.booking_escrow_service import BookingEscrowService
from app.domain.services.dispute_service import DisputeService

router = APIRouter()


class BookingResponse(BaseModel):
    id: int
    customer_id: int | None
    model_id: int | None
    service_id: int | None
    price: int
    commission_rate_snapshot: int | None
    status: BookingStatus
    payment_status: PaymentStatus
    hold_transaction_id: int | None
    release_transaction_id: int | None
    dispute_reason: str | None = None
    disputed_at: datetime | None = None
    dispute_resolution: DisputeResolution | None = None
    dispute_resolved_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    class Config:
        from_attributes = True
        protected_namespaces = ()


class ReleaseResponse(BaseModel):
    booking: BookingResponse
    earning_transaction_id: int
    commission: int
    net: int
    commission_rate: int
    referral_commission: int
    referrer_id: int | None = None


class RefundResponse(BaseModel):
    booking: BookingResponse
    refund_transaction_id: int
    amount: int


class DisputeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class RefundRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class ResolveDisputeRequest(BaseModel):
    # Validated by the service so a bad value surfaces as a field error
    resolution: str


class ResolveDisputeResponse(BaseModel):
    booking: BookingResponse
    resolution: DisputeResolution
    release: ReleaseResponse | None = None
    refund: RefundResponse | None = None


def _release_response(result) -> ReleaseResponse:
    referral = result.referral_commission
    paid = bool(referral and referral.paid)
    return ReleaseResponse(
        booking=BookingResponse.model_validate(result.booking),
        earning_transaction_id=result.earning_transaction.id,
        commission=result.commission,
        net=result.net,
        commission_rate=result.commission_rate,
        referral_commission=referral.amount if paid else 0,
        referrer_id=referral.referrer_id if paid else None,
    )


def _refund_response(result) -> RefundResponse:
    return RefundResponse(
        booking=BookingResponse.model_validate(result.booking),
        refund_transaction_id=result.refund_transaction.id,
        amount=result.amount,
    )


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get booking",
    dependencies=[Depends(require_admin_api_key)],
)
async def get_booking(booking_id: int, db: AsyncSession = Depends(get_db)):
    service = BookingEscrowService(db)
    return await service.get_booking(booking_id)


@router.post(
    "/{booking_id}/hold",
    response_model=BookingResponse,
    summary="Place escrow hold",
    description="Moves the booking price from the customer's wallet into escrow.",
)
async def place_hold(
    booking_id: int,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    service = BookingEscrowService(db)
    return await service.place_hold(booking_id, admin_id)


@router.post(
    "/{booking_id}/dispute",
    response_model=BookingResponse,
    summary="Open dispute",
)
async def open_dispute(
    booking_id: int,
    body: DisputeRequest,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    service = BookingEscrowService(db)
    return await service.open_dispute(booking_id, admin_id, body.reason)


@router.post(
    "/{booking_id}/release",
    response_model=ReleaseResponse,
    summary="Release escrow to the model",
    description="Pays the model the booking price net of commission and runs the referral cascade.",
)
async def release_booking(
    booking_id: int,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    service = BookingEscrowService(db)
    result = await service.release_booking(booking_id, admin_id)
    return _release_response(result)


@router.post(
    "/{booking_id}/refund",
    response_model=RefundResponse,
    summary="Refund escrow to the customer",
)
async def refund_booking(
    booking_id: int,
    body: RefundRequest | None = None,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    service = BookingEscrowService(db)
    result = await service.refund_booking(booking_id, admin_id, body.reason if body else None)
    return _refund_response(result)


@router.post(
    "/{booking_id}/resolve-dispute",
    response_model=ResolveDisputeResponse,
    summary="Resolve dispute",
    description="Settles a disputed booking with resolution 'released' or 'refunded'.",
)
async def resolve_dispute(
    booking_id: int,
    body: ResolveDisputeRequest,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    service = DisputeService(db)
    result = await service.resolve_dispute(booking_id, admin_id, body.resolution)
    return ResolveDisputeResponse(
        booking=BookingResponse.model_validate(result.booking),
        resolution=result.resolution,
        release=_release_response(result.release) if result.release else None,
        refund=_refund_response(result.refund) if result.refund else None,
    )

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from courtside.core.auth_utils import Principal
from courtside.core.dependencies import (
    get_cache, get_current_principal, get_db, get_gateway, get_notifier,
    get_settings, unwrap,
)
from courtside.models.enums import BookingStatus
from courtside.schemas.booking import (
    BookingCreate, BookingCreatedOut, BookingOut, CancelOut, CancelRequest, OrderOut,
)
from courtside.services.bookings import BookingService

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_service(
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    gateway=Depends(get_gateway),
    cache=Depends(get_cache),
    notifier=Depends(get_notifier),
) -> BookingService:
    return BookingService(db, settings, gateway, cache=cache, notifier=notifier)


def order_out(payment, settings) -> OrderOut:
    return OrderOut(
        booking_id=payment.booking_id,
        payment_id=payment.id,
        gateway_order_id=payment.gateway_order_id,
        key_id=settings.razorpay_key_id,
        currency=payment.currency,
        amount=payment.amount,
        processing_fee=payment.processing_fee,
        gst=payment.gst,
        total_amount=payment.total_amount,
    )


# ---------------------------------------------------------------------
# CREATE BOOKING
# ---------------------------------------------------------------------
@router.post("", response_model=BookingCreatedOut, status_code=201)
def create_booking(
    data: BookingCreate,
    service: BookingService = Depends(get_booking_service),
    settings=Depends(get_settings),
    principal: Principal = Depends(get_current_principal),
):
    created = unwrap(service.create(
        user_id=principal.id,
        court_id=data.court_id,
        day=data.date,
        start=data.start_time,
        duration_hours=data.duration_hours,
        quoted_amount=data.quoted_amount,
        method=data.method.value if data.method else None,
    ))

    return BookingCreatedOut(
        booking=BookingOut.model_validate(created.booking),
        order=order_out(created.payment, settings),
    )


# ---------------------------------------------------------------------
# MY BOOKINGS
# ---------------------------------------------------------------------
@router.get("/my", response_model=List[BookingOut])
def my_bookings(
    status: Optional[BookingStatus] = None,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
):
    return service.list_for_user(principal.id, status)


@router.get("/{booking_id}", response_model=BookingOut)
def get_booking(
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
):
    return unwrap(service.get_for(booking_id, principal))


# ---------------------------------------------------------------------
# CANCEL
# ---------------------------------------------------------------------
@router.post("/{booking_id}/cancel", response_model=CancelOut)
def cancel_booking(
    booking_id: int,
    data: Optional[CancelRequest] = None,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
):
    reason = data.reason if data else None
    outcome = unwrap(service.cancel(booking_id, principal, reason))

    refund = outcome.refund
    return CancelOut(
        booking=BookingOut.model_validate(outcome.booking),
        refund_id=refund.id if refund else None,
        refund_amount=refund.amount if refund else None,
        refund_status=refund.status.value if refund else None,
    )


# ---------------------------------------------------------------------
# GATEWAY ORDER (retry after a failed or lost response)
# ---------------------------------------------------------------------
@router.post("/{booking_id}/order", response_model=OrderOut)
def booking_order(
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
    settings=Depends(get_settings),
    principal: Principal = Depends(get_current_principal),
):
    booking = unwrap(service.get_for(booking_id, principal))
    payment = unwrap(service.ensure_order(booking.id))
    return order_out(payment, settings)

import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from courtside.core.auth_utils import Principal
from courtside.core.dependencies import (
    get_cache, get_current_principal, get_db, get_gateway, get_notifier,
    get_settings, require_staff, unwrap,
)
from courtside.core.exceptions import (
    ErrorKind, GatewayVerificationError, Result, TransientStorageError,
)
from courtside.core.logging_config import get_logger
from courtside.models.payment import Payment
from courtside.schemas.payment import RefundCreate, RefundList, RefundOut, VerifyCheckout
from courtside.schemas.webhook import MalformedEvent, parse_event
from courtside.services.bookings import BookingService
from courtside.services.refunds import RefundService
from courtside.services.webhooks import WebhookReconciler

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger()


# ---------------------------------------------------------------------
# WEBHOOK
# ---------------------------------------------------------------------
@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    x_razorpay_event_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    gateway=Depends(get_gateway),
    cache=Depends(get_cache),
    notifier=Depends(get_notifier),
):
    raw_body = await request.body()
    client = request.client.host if request.client else "unknown"

    # Nothing is parsed, read or written before the signature checks out
    try:
        gateway.verify_webhook(raw_body, x_razorpay_signature)
    except GatewayVerificationError as e:
        logger.bind(log_type="security").warning(
            f"Webhook rejected | ip={client} | reason={e} | bytes={len(raw_body)}"
        )
        status_code = 400 if not x_razorpay_signature else 401
        raise HTTPException(status_code=status_code, detail="Invalid webhook signature")

    try:
        payload = json.loads(raw_body)
        event = parse_event(payload, raw_body, event_id=x_razorpay_event_id)
    except (ValueError, MalformedEvent) as e:
        logger.bind(log_type="webhook").warning(f"Malformed webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Malformed webhook payload")

    reconciler = WebhookReconciler(db, settings, gateway, cache=cache, notifier=notifier)
    try:
        outcome = await run_in_threadpool(reconciler.apply, event, raw_body, payload)
    except TransientStorageError:
        # Non-2xx makes the gateway retry later
        raise HTTPException(status_code=503, detail="Temporarily unable to record event")

    return {
        "status": "ok",
        "event": event.event_type,
        "outcome": outcome.status,
        "duplicate": outcome.duplicate,
    }


# ---------------------------------------------------------------------
# CHECKOUT VERIFICATION (read-only; confirmation comes from the webhook)
# ---------------------------------------------------------------------
@router.post("/verify")
def verify_checkout(
    data: VerifyCheckout,
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    principal: Principal = Depends(get_current_principal),
):
    payment = (
        db.query(Payment)
        .filter(Payment.gateway_order_id == data.razorpay_order_id)
        .first()
    )
    if not payment or payment.booking.user_id != principal.id:
        raise HTTPException(status_code=404, detail="Payment not found")

    if not gateway.verify_checkout(
        data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature
    ):
        logger.bind(log_type="security").warning(
            f"Checkout signature mismatch | order={data.razorpay_order_id} | user={principal.id}"
        )
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    return {
        "verified": True,
        "booking_id": payment.booking_id,
        "booking_status": payment.booking.status.value,
        "payment_status": payment.status.value,
    }


# ---------------------------------------------------------------------
# REFUNDS
# ---------------------------------------------------------------------
def _visible_payment(db: Session, settings, gateway, payment_id: int, principal: Principal) -> Result[Payment]:
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment:
        return Result.fail(ErrorKind.NOT_FOUND, "Payment not found")

    access = BookingService(db, settings, gateway).get_for(payment.booking_id, principal)
    if not access.ok:
        return access
    return Result.success(payment)


@router.get("/{payment_id}/refunds", response_model=RefundList)
def list_refunds(
    payment_id: int,
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    gateway=Depends(get_gateway),
    principal: Principal = Depends(get_current_principal),
):
    payment = unwrap(_visible_payment(db, settings, gateway, payment_id, principal))
    return unwrap(RefundService(db, gateway, settings).list_refunds(payment.id))


@router.post("/{payment_id}/refunds", response_model=RefundOut, status_code=201)
def create_refund(
    payment_id: int,
    data: RefundCreate,
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    gateway=Depends(get_gateway),
    principal: Principal = Depends(require_staff),
):
    refund = unwrap(RefundService(db, gateway, settings).request_refund(
        payment_id, principal, data.amount, data.reason or "Refund issued by staff"
    ))

    logger.bind(log_type="admin").info(
        f"Refund requested | payment={payment_id} | refund={refund.id} | "
        f"amount={refund.amount} | by={principal.role.value}:{principal.id}"
    )
    return RefundOut(
        id=refund.id,
        amount=refund.amount,
        status=refund.status.value,
        reason=refund.reason,
        gateway_refund_id=refund.gateway_refund_id,
        created_at=refund.created_at,
        processed_at=refund.processed_at,
    )

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from courtside.core.auth_utils import Principal
from courtside.core.dependencies import (
    get_cache, get_db, get_gateway, get_notifier, get_settings, require_admin,
)
from courtside.core.logging_config import get_logger
from courtside.models.payment import Payment
from courtside.schemas.payment import PaymentReviewOut
from courtside.services.sweeper import run_sweep

router = APIRouter(prefix="/admin", tags=["Admin"])
logger = get_logger()


# ---------------------------------------------------------------------
# MANUAL RECONCILIATION QUEUE
# ---------------------------------------------------------------------
@router.get("/payments/review", response_model=List[PaymentReviewOut])
def payments_for_review(
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    payments = (
        db.query(Payment)
        .filter(Payment.review_reason.isnot(None))
        .order_by(Payment.updated_at.desc())
        .all()
    )

    return [
        PaymentReviewOut(
            id=p.id,
            booking_id=p.booking_id,
            gateway_order_id=p.gateway_order_id,
            gateway_payment_id=p.gateway_payment_id,
            status=p.status.value,
            total_amount=p.total_amount,
            captured_amount=p.captured_amount,
            review_reason=p.review_reason,
            updated_at=p.updated_at,
        )
        for p in payments
    ]


# ---------------------------------------------------------------------
# SWEEP ON DEMAND
# ---------------------------------------------------------------------
@router.post("/sweep")
def sweep_now(
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    gateway=Depends(get_gateway),
    cache=Depends(get_cache),
    notifier=Depends(get_notifier),
    admin: Principal = Depends(require_admin),
):
    report = run_sweep(db, settings, gateway, cache=cache, notifier=notifier)
    logger.bind(log_type="admin").info(f"Manual sweep by admin {admin.id}: {report.to_dict()}")
    return report.to_dict()

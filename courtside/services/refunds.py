"""Refund lifecycle: PENDING -> COMPLETED | FAILED.

A refund is opened against a captured payment and settled later by a
gateway webhook. Opening a refund requires that it fit the payment's
remaining balance (captured total minus refunds completed or in flight),
so completed refunds can never add up to more than was captured.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from courtside.core.auth_utils import Principal
from courtside.core.exceptions import ErrorKind, GatewayError, Result
from courtside.core.logging_config import get_logger
from courtside.models.enums import ActorRole, PaymentStatus, RefundStatus
from courtside.models.facility import Court, Facility
from courtside.models.payment import Payment, Refund
from courtside.utils.pricing import from_paise, money
from courtside.utils.timeutils import utc_now

logger = get_logger()


def refund_eligibility(starts_at: datetime, now: datetime) -> dict:
    """Tiered cancellation policy for user-initiated cancellations."""
    hours_until = (starts_at - now) / timedelta(hours=1)

    if hours_until < 0:
        return {"percentage": 0, "reason": "Booking has already started or passed"}
    if hours_until >= 24:
        return {"percentage": 100, "reason": "Full refund - cancelled 24+ hours before booking"}
    if hours_until >= 12:
        return {"percentage": 50, "reason": "Partial refund - cancelled 12-24 hours before booking"}
    return {"percentage": 0, "reason": "No refund - cancelled less than 12 hours before booking"}


class RefundService:
    def __init__(self, db: Session, gateway, settings):
        self.db = db
        self.gateway = gateway
        self.settings = settings
        self.log = logger.bind(log_type="payment")

    # ------------------------------------------------------------------
    # AMOUNTS
    # ------------------------------------------------------------------
    def cancellation_amount(self, payment: Payment, actor: Principal, starts_at: datetime, now: datetime) -> Decimal:
        balance = payment.refundable_balance
        if balance <= 0:
            return Decimal("0")

        if self.settings.refund_policy == "tiered" and actor.role == ActorRole.USER:
            pct = refund_eligibility(starts_at, now)["percentage"]
            return money(balance * Decimal(pct) / Decimal(100))

        return balance

    # ------------------------------------------------------------------
    # OPEN (no commit)
    # ------------------------------------------------------------------
    def open_refund(self, payment: Payment, amount: Optional[Decimal] = None, reason: Optional[str] = None) -> Result[Refund]:
        if payment.status != PaymentStatus.CAPTURED:
            return Result.fail(
                ErrorKind.INVALID_TRANSITION,
                "Only captured payments can be refunded",
                payment_status=payment.status.value,
            )

        balance = payment.refundable_balance
        amount = balance if amount is None else money(amount)

        if amount <= 0:
            return Result.fail(ErrorKind.INVALID_AMOUNT, "Refund amount must be positive")
        if amount > balance:
            return Result.fail(
                ErrorKind.REFUND_EXCEEDS_BALANCE,
                "Refund exceeds remaining captured balance",
                requested=str(amount),
                remaining=str(balance),
            )

        refund = Refund(amount=amount, status=RefundStatus.PENDING, reason=reason)
        payment.refunds.append(refund)
        self.db.flush()

        self.log.info(f"Refund opened | refund={refund.id} | payment={payment.id} | amount={amount}")
        return Result.success(refund)

    # ------------------------------------------------------------------
    # SUBMIT TO GATEWAY (commits)
    # ------------------------------------------------------------------
    def submit(self, refund: Refund) -> Refund:
        payment = refund.payment
        try:
            response = self.gateway.create_refund(
                payment.gateway_payment_id,
                Decimal(refund.amount),
                notes={"refund_id": str(refund.id), "reason": refund.reason or ""},
            )
        except GatewayError as e:
            refund.status = RefundStatus.FAILED
            refund.failure_reason = str(e)
            refund.processed_at = utc_now()
            self.db.commit()
            return refund

        refund.gateway_refund_id = response.get("id")
        self.db.commit()
        self.log.info(f"Refund submitted | refund={refund.id} | gateway_refund={refund.gateway_refund_id}")
        return refund

    # ------------------------------------------------------------------
    # EXPLICIT OWNER/ADMIN REQUEST
    # ------------------------------------------------------------------
    def request_refund(self, payment_id: int, actor: Principal, amount=None, reason: Optional[str] = None) -> Result[Refund]:
        payment = (
            self.db.query(Payment)
            .filter(Payment.id == payment_id)
            .with_for_update()
            .first()
        )
        if not payment:
            return Result.fail(ErrorKind.NOT_FOUND, "Payment not found")

        if actor.role == ActorRole.OWNER:
            owner_id = (
                self.db.query(Facility.owner_id)
                .join(Court, Court.facility_id == Facility.id)
                .filter(Court.id == payment.booking.court_id)
                .scalar()
            )
            if owner_id != actor.id:
                self.db.rollback()
                return Result.fail(ErrorKind.FORBIDDEN, "You do not own this facility")

        result = self.open_refund(payment, amount, reason)
        if not result.ok:
            self.db.rollback()
            return result

        self.db.commit()
        return Result.success(self.submit(result.value))

    # ------------------------------------------------------------------
    # SETTLEMENT (no commit, driven by webhooks)
    # ------------------------------------------------------------------
    def settle(self, refund: Refund, succeeded: bool, failure_reason: Optional[str] = None) -> Result[Refund]:
        if refund.status != RefundStatus.PENDING:
            # Terminal already; a late or repeated event changes nothing
            return Result.success(refund)

        if succeeded:
            payment = refund.payment
            completed = payment.refunded_total(RefundStatus.COMPLETED)
            if completed + Decimal(refund.amount) > Decimal(payment.total_amount):
                return Result.fail(
                    ErrorKind.REFUND_EXCEEDS_BALANCE,
                    "Completing this refund would exceed the captured total",
                    refund_id=refund.id,
                )
            refund.status = RefundStatus.COMPLETED
        else:
            refund.status = RefundStatus.FAILED
            refund.failure_reason = failure_reason

        refund.processed_at = utc_now()
        self.db.flush()
        self.log.info(f"Refund settled | refund={refund.id} | status={refund.status.value}")
        return Result.success(refund)

    def record_external(self, payment: Payment, gateway_refund_id: str, amount_paise: int) -> Result[Refund]:
        """A refund issued outside this service (gateway dashboard)."""
        amount = from_paise(amount_paise)
        completed = payment.refunded_total(RefundStatus.COMPLETED)
        if payment.status != PaymentStatus.CAPTURED or completed + amount > Decimal(payment.total_amount):
            return Result.fail(
                ErrorKind.REFUND_EXCEEDS_BALANCE,
                "External refund does not fit the captured balance",
                gateway_refund_id=gateway_refund_id,
                amount=str(amount),
            )

        refund = Refund(
            amount=amount,
            status=RefundStatus.COMPLETED,
            reason="Refund issued at gateway",
            gateway_refund_id=gateway_refund_id,
            processed_at=utc_now(),
        )
        payment.refunds.append(refund)
        self.db.flush()
        return Result.success(refund)

    # ------------------------------------------------------------------
    # QUERY
    # ------------------------------------------------------------------
    def list_refunds(self, payment_id: int) -> Result[dict]:
        payment = self.db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment:
            return Result.fail(ErrorKind.NOT_FOUND, "Payment not found")

        running = Decimal("0")
        rows = []
        for r in payment.refunds:
            if r.status == RefundStatus.COMPLETED:
                running += Decimal(r.amount)
            rows.append({
                "id": r.id,
                "amount": Decimal(r.amount),
                "status": r.status.value,
                "reason": r.reason,
                "gateway_refund_id": r.gateway_refund_id,
                "created_at": r.created_at,
                "processed_at": r.processed_at,
                "refunded_to_date": running,
            })

        return Result.success({
            "payment_id": payment.id,
            "total_amount": Decimal(payment.total_amount),
            "refunded_total": payment.refunded_total(RefundStatus.COMPLETED),
            "pending_total": payment.refunded_total(RefundStatus.PENDING),
            "remaining_balance": payment.refundable_balance,
            "refunds": rows,
        })

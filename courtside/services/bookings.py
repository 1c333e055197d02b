"""Booking lifecycle.

    PENDING -> CONFIRMED | CANCELLED
    CONFIRMED -> COMPLETED | CANCELLED
    COMPLETED, CANCELLED: terminal

Creation validates the window, claims the interval and persists the
booking with its payment in one transaction; only then is the gateway
order requested. Confirmation comes exclusively from the webhook
reconciler. Cancellation releases the interval and opens a refund when
money was captured.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, joinedload

from courtside.core.auth_utils import SYSTEM, Principal
from courtside.core.exceptions import ErrorKind, GatewayError, Result
from courtside.core.logging_config import get_logger
from courtside.models.booking import Booking
from courtside.models.enums import ActorRole, BookingStatus, FacilityStatus, PaymentStatus
from courtside.models.facility import Court
from courtside.models.payment import Payment, Refund
from courtside.services.refunds import RefundService
from courtside.services.reservation import ReservationGuard
from courtside.utils.pricing import calculate_booking_amount, calculate_processing_fees, money
from courtside.utils.timeutils import add_minutes, combine, format_hhmm, to_minutes, utc_now

logger = get_logger()

PAYMENT_TIMEOUT_REASON = "payment timeout"
PAYMENT_FAILED_REASON = "payment failed"
ORDER_FAILED_REASON = "payment order could not be created"


@dataclass(frozen=True)
class BookingCreated:
    booking: Booking
    payment: Payment

    @property
    def gateway_order_id(self):
        return self.payment.gateway_order_id


@dataclass(frozen=True)
class CancelOutcome:
    booking: Booking
    refund: Optional[Refund] = None


class BookingService:
    def __init__(self, db: Session, settings, gateway, guard: Optional[ReservationGuard] = None, cache=None, notifier=None):
        self.db = db
        self.settings = settings
        self.gateway = gateway
        self.guard = guard or ReservationGuard(settings.claim_granularity_minutes)
        self.cache = cache
        self.notifier = notifier
        self.refunds = RefundService(db, gateway, settings)
        self.log = logger.bind(log_type="booking")

    # ------------------------------------------------------------------
    # HELPERS
    # ------------------------------------------------------------------
    def _now(self, now: Optional[datetime]) -> datetime:
        return now or self.settings.local_now()

    def _invalidate(self, booking: Booking):
        if self.cache is not None:
            self.cache.invalidate(booking.court_id, booking.booking_date)

    def _notify(self, kind: str, booking: Booking, **extra):
        if self.notifier is not None:
            self.notifier.notify(kind, booking, **extra)

    def _locked(self, booking_id: int) -> Optional[Booking]:
        return (
            self.db.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .first()
        )

    def lock_with_payment(self, booking_id: int) -> Tuple[Optional[Booking], Optional[Payment]]:
        """Row-lock a booking, then its payment.

        Every path that writes both rows locks them in this order.
        """
        booking = self._locked(booking_id)
        if booking is None:
            return None, None
        payment = (
            self.db.query(Payment)
            .filter(Payment.booking_id == booking_id)
            .with_for_update()
            .first()
        )
        return booking, payment

    def validate_window(self, day: date, start: time, duration_hours, now: datetime) -> Result[time]:
        try:
            duration = Decimal(str(duration_hours))
        except InvalidOperation:
            return Result.fail(ErrorKind.INVALID_WINDOW, "Duration must be a number of hours")

        max_hours = Decimal(str(self.settings.max_booking_hours))
        if duration <= 0 or duration > max_hours:
            return Result.fail(
                ErrorKind.INVALID_WINDOW,
                f"Duration must be between 0 and {self.settings.max_booking_hours} hours",
            )

        minutes = duration * 60
        if minutes != minutes.to_integral_value():
            return Result.fail(ErrorKind.INVALID_WINDOW, "Duration must be a whole number of minutes")

        try:
            end = add_minutes(start, int(minutes))
        except ValueError:
            return Result.fail(ErrorKind.INVALID_WINDOW, "Booking cannot run past midnight")

        if not self.guard.is_aligned(start, end):
            return Result.fail(
                ErrorKind.INVALID_WINDOW,
                f"Start and end must fall on {self.guard.granularity}-minute boundaries",
            )

        if combine(day, start) <= now:
            return Result.fail(ErrorKind.INVALID_WINDOW, "Booking date and time must be in the future")

        return Result.success(end)

    # ------------------------------------------------------------------
    # CREATE
    # ------------------------------------------------------------------
    def create(
        self,
        user_id: int,
        court_id: int,
        day: date,
        start: time,
        duration_hours,
        quoted_amount=None,
        method: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Result[BookingCreated]:
        now = self._now(now)

        window = self.validate_window(day, start, duration_hours, now)
        if not window.ok:
            return window
        end = window.value

        court = (
            self.db.query(Court)
            .options(joinedload(Court.facility))
            .filter(Court.id == court_id)
            .first()
        )
        if not court:
            return Result.fail(ErrorKind.NOT_FOUND, "Court not found", court_id=court_id)
        if not court.is_active:
            return Result.fail(ErrorKind.COURT_INACTIVE, "Court is not available for booking")
        if court.facility.status != FacilityStatus.APPROVED:
            return Result.fail(
                ErrorKind.COURT_INACTIVE,
                "Facility is not approved for bookings",
                facility_status=court.facility.status.value,
            )

        if start < court.opening_time or end > court.closing_time:
            return Result.fail(
                ErrorKind.INVALID_WINDOW,
                "Booking time is outside operating hours",
                opening=format_hhmm(court.opening_time),
                closing=format_hhmm(court.closing_time),
            )

        hours = Decimal(to_minutes(end) - to_minutes(start)) / 60
        amount = calculate_booking_amount(court.price_per_hour, hours)
        if quoted_amount is not None and money(quoted_amount) != amount:
            return Result.fail(
                ErrorKind.INVALID_AMOUNT,
                "Quoted amount does not match the court price",
                expected=str(amount),
                quoted=str(money(quoted_amount)),
            )

        method = (method or self.settings.default_payment_method).upper()
        fees = calculate_processing_fees(amount, method)

        booking = Booking(
            user_id=user_id,
            court_id=court.id,
            booking_date=day,
            start_time=start,
            end_time=end,
            status=BookingStatus.PENDING,
            total_amount=amount,
        )
        payment = Payment(
            booking=booking,
            amount=fees["base_amount"],
            processing_fee=fees["processing_fee"],
            gst=fees["gst"],
            total_amount=fees["total_amount"],
            currency=self.settings.currency,
            method=method,
            status=PaymentStatus.CREATED,
        )
        self.db.add_all([booking, payment])

        reserved = self.guard.try_reserve(self.db, court.id, day, start, end, booking=booking)
        if not reserved.ok:
            return reserved

        self.db.commit()
        self._invalidate(booking)

        self.log.info(
            f"Booking Created | user={user_id} | court={court.id} | date={day} | "
            f"{format_hhmm(start)}-{format_hhmm(end)} | booking={booking.id}"
        )

        # The slot is ours; now ask the gateway for an order
        order = self.ensure_order(booking.id)
        if not order.ok:
            self._abandon(booking.id, ORDER_FAILED_REASON)
            return order

        return Result.success(BookingCreated(booking=booking, payment=order.value))

    def ensure_order(self, booking_id: int) -> Result[Payment]:
        """Gateway order for a PENDING booking, created at most once."""
        booking, payment = self.lock_with_payment(booking_id)
        if not payment:
            self.db.rollback()
            return Result.fail(ErrorKind.NOT_FOUND, "Booking not found")

        if booking.status != BookingStatus.PENDING or payment.status != PaymentStatus.CREATED:
            self.db.rollback()
            return Result.fail(
                ErrorKind.INVALID_TRANSITION,
                "Booking is not awaiting payment",
                booking_status=booking.status.value,
            )

        if payment.gateway_order_id:
            self.db.rollback()
            return Result.success(payment)

        try:
            order = self.gateway.create_order(
                receipt=f"booking_{booking.id}",
                amount=Decimal(payment.total_amount),
                notes={
                    "booking_id": str(booking.id),
                    "payment_id": str(payment.id),
                    "base_amount": str(payment.amount),
                    "processing_fee": str(payment.processing_fee),
                    "gst": str(payment.gst),
                },
            )
        except GatewayError as e:
            self.db.rollback()
            return Result.fail(ErrorKind.GATEWAY_UNAVAILABLE, "Payment gateway unavailable", reason=str(e))

        payment.gateway_order_id = order["id"]
        self.db.commit()

        logger.bind(log_type="payment").info(
            f"Order created | booking={booking.id} | order={payment.gateway_order_id} | "
            f"amount={payment.total_amount}"
        )
        return Result.success(payment)

    def _abandon(self, booking_id: int, reason: str):
        booking, payment = self.lock_with_payment(booking_id)
        if booking and booking.status == BookingStatus.PENDING:
            self.apply_cancel(booking, SYSTEM, reason)
            if payment and payment.status == PaymentStatus.CREATED:
                payment.status = PaymentStatus.FAILED
                payment.failure_reason = reason
        self.db.commit()

    # ------------------------------------------------------------------
    # TRANSITIONS (no commit; callers own the transaction)
    # ------------------------------------------------------------------
    def apply_confirm(self, booking: Booking) -> Result[Booking]:
        if booking.status == BookingStatus.CONFIRMED:
            return Result.success(booking)
        if booking.status != BookingStatus.PENDING:
            return Result.fail(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot confirm a {booking.status.value} booking",
                booking_status=booking.status.value,
            )

        booking.status = BookingStatus.CONFIRMED
        booking.confirmed_at = utc_now()
        self.db.flush()

        self.log.info(f"Booking Confirmed | booking={booking.id}")
        return Result.success(booking)

    def apply_cancel(self, booking: Booking, actor: Principal, reason: Optional[str]) -> Result[Booking]:
        if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            return Result.fail(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot cancel a {booking.status.value} booking",
                booking_status=booking.status.value,
            )

        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = utc_now()
        booking.cancelled_by = actor.role.value
        booking.cancel_reason = reason

        self.guard.release(self.db, booking_id=booking.id)
        self.db.expire(booking, ["claims"])
        self.db.flush()

        self.log.info(f"Booking Cancelled | booking={booking.id} | by={actor.role.value} | reason={reason}")
        return Result.success(booking)

    # ------------------------------------------------------------------
    # CONFIRM / CANCEL / COMPLETE (own transactions)
    # ------------------------------------------------------------------
    def confirm(self, booking_id: int) -> Result[Booking]:
        booking = self._locked(booking_id)
        if not booking:
            return Result.fail(ErrorKind.NOT_FOUND, "Booking not found")

        result = self.apply_confirm(booking)
        if result.ok:
            self.db.commit()
            self._notify("booking_confirmed", booking)
        else:
            self.db.rollback()
        return result

    def cancel(self, booking_id: int, actor: Principal, reason: Optional[str] = None, now: Optional[datetime] = None) -> Result[CancelOutcome]:
        now = self._now(now)

        booking, payment = self.lock_with_payment(booking_id)
        if not booking:
            return Result.fail(ErrorKind.NOT_FOUND, "Booking not found")

        if actor.role == ActorRole.USER:
            if booking.user_id != actor.id:
                self.db.rollback()
                return Result.fail(ErrorKind.NOT_FOUND, "Booking not found")
            if booking.status in (BookingStatus.PENDING, BookingStatus.CONFIRMED) and booking.starts_at <= now:
                self.db.rollback()
                return Result.fail(ErrorKind.INVALID_TRANSITION, "Cannot cancel a booking that has already started")
        elif actor.role == ActorRole.OWNER:
            if booking.court.facility.owner_id != actor.id:
                self.db.rollback()
                return Result.fail(ErrorKind.FORBIDDEN, "You do not own this facility")

        result = self.apply_cancel(booking, actor, reason)
        if not result.ok:
            self.db.rollback()
            return result

        refund = None
        if payment is not None and payment.status == PaymentStatus.CAPTURED:
            amount = self.refunds.cancellation_amount(payment, actor, booking.starts_at, now)
            if amount > 0:
                opened = self.refunds.open_refund(payment, amount, reason or "Booking cancelled")
                refund = opened.value if opened.ok else None
        elif payment is not None and payment.status == PaymentStatus.CREATED:
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = "booking cancelled before payment"

        self.db.commit()
        self._invalidate(booking)

        if refund is not None:
            refund = self.refunds.submit(refund)

        self._notify("booking_cancelled", booking, reason=reason)
        return Result.success(CancelOutcome(booking=booking, refund=refund))

    def complete(self, booking_id: int, now: Optional[datetime] = None) -> Result[Booking]:
        now = self._now(now)

        booking = self._locked(booking_id)
        if not booking:
            return Result.fail(ErrorKind.NOT_FOUND, "Booking not found")

        if booking.status != BookingStatus.CONFIRMED:
            self.db.rollback()
            return Result.fail(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot complete a {booking.status.value} booking",
                booking_status=booking.status.value,
            )
        if booking.ends_at > now:
            self.db.rollback()
            return Result.fail(ErrorKind.INVALID_TRANSITION, "Booking has not ended yet")

        booking.status = BookingStatus.COMPLETED
        booking.completed_at = utc_now()
        self.db.commit()

        self.log.info(f"Booking Completed | booking={booking.id}")
        return Result.success(booking)

    # ------------------------------------------------------------------
    # TIME-DRIVEN SWEEPS
    # ------------------------------------------------------------------
    def expire_stale(self, now_utc: Optional[datetime] = None) -> List[int]:
        """Cancel PENDING bookings whose checkout was abandoned."""
        now_utc = now_utc or utc_now()
        cutoff = now_utc - timedelta(minutes=self.settings.payment_expiry_minutes)

        candidates = [
            row.id for row in
            self.db.query(Booking.id)
            .join(Payment, Payment.booking_id == Booking.id)
            .filter(
                Booking.status == BookingStatus.PENDING,
                Booking.created_at < cutoff,
                Payment.status == PaymentStatus.CREATED,
                Payment.review_reason.is_(None),
            )
            .all()
        ]
        self.db.rollback()

        expired = []
        for booking_id in candidates:
            booking, payment = self.lock_with_payment(booking_id)
            # Re-check under the row lock; a webhook may have won the race
            if (
                booking is None
                or booking.status != BookingStatus.PENDING
                or payment is None
                or payment.status != PaymentStatus.CREATED
                or payment.review_reason is not None
            ):
                self.db.rollback()
                continue

            self.apply_cancel(booking, SYSTEM, PAYMENT_TIMEOUT_REASON)
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = "order expired"
            self.db.commit()

            self._invalidate(booking)
            self._notify("booking_expired", booking)
            expired.append(booking.id)

        if expired:
            self.log.info(f"Expired {len(expired)} abandoned bookings: {expired}")
        return expired

    def complete_elapsed(self, now: Optional[datetime] = None) -> List[int]:
        now = self._now(now)

        candidates = [
            row.id for row in
            self.db.query(Booking.id)
            .filter(
                Booking.status == BookingStatus.CONFIRMED,
                or_(
                    Booking.booking_date < now.date(),
                    and_(Booking.booking_date == now.date(), Booking.end_time <= now.time()),
                ),
            )
            .all()
        ]
        self.db.rollback()

        completed = []
        for booking_id in candidates:
            if self.complete(booking_id, now=now).ok:
                completed.append(booking_id)
        return completed

    # ------------------------------------------------------------------
    # QUERIES
    # ------------------------------------------------------------------
    def get_for(self, booking_id: int, actor: Principal) -> Result[Booking]:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            return Result.fail(ErrorKind.NOT_FOUND, "Booking not found")

        if actor.role == ActorRole.USER and booking.user_id != actor.id:
            return Result.fail(ErrorKind.NOT_FOUND, "Booking not found")
        if actor.role == ActorRole.OWNER and booking.court.facility.owner_id != actor.id:
            return Result.fail(ErrorKind.FORBIDDEN, "You do not own this facility")

        return Result.success(booking)

    def list_for_user(self, user_id: int, status: Optional[BookingStatus] = None) -> List[Booking]:
        q = self.db.query(Booking).filter(Booking.user_id == user_id)
        if status:
            q = q.filter(Booking.status == status)
        return q.order_by(Booking.booking_date.desc(), Booking.start_time.desc()).all()

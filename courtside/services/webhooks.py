"""Webhook reconciler: gateway events delivered at least once, applied at most once.

Every verified delivery is first written to ``webhook_events`` under its
idempotency key and committed. A repeat delivery of an event whose effect
is already recorded returns immediately. Handlers then run in a second
transaction and never move a payment or booking backwards: a late
``payment.failed`` after a capture, or a repeated capture, is ignored.
"""

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from courtside.core.auth_utils import SYSTEM
from courtside.core.exceptions import TransientStorageError
from courtside.core.logging_config import get_logger
from courtside.models.enums import (
    BookingStatus, PaymentStatus, RefundStatus, WebhookEventStatus,
)
from courtside.models.payment import Payment, Refund
from courtside.models.webhook_event import WebhookEvent
from courtside.schemas.webhook import (
    GatewayEvent, PaymentCaptured, PaymentFailed, RefundFailed, RefundProcessed,
    UnknownEvent,
)
from courtside.services.bookings import PAYMENT_FAILED_REASON, BookingService
from courtside.utils.pricing import from_paise
from courtside.utils.timeutils import utc_now

logger = get_logger()

# Ledger states whose effects are final
SETTLED_STATES = {
    WebhookEventStatus.PROCESSED.value,
    WebhookEventStatus.IGNORED.value,
    WebhookEventStatus.FLAGGED.value,
}


@dataclass
class Outcome:
    status: str
    detail: str
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    duplicate: bool = False


class WebhookReconciler:
    def __init__(self, db: Session, settings, gateway, cache=None, notifier=None):
        self.db = db
        self.bookings = BookingService(db, settings, gateway, cache=cache, notifier=notifier)
        self.refunds = self.bookings.refunds
        self.cache = cache
        self.notifier = notifier
        self.log = logger.bind(log_type="webhook")

        # Work that must wait until the handler's transaction commits
        self._refunds_to_submit: List[Refund] = []
        self._after_commit = []

    # ------------------------------------------------------------------
    # LEDGER
    # ------------------------------------------------------------------
    def record(self, event: GatewayEvent, raw_body: bytes, payload: Optional[dict]) -> WebhookEvent:
        """Durably store the raw event; returns the (possibly existing) ledger row."""
        key = event.idempotency_key
        row = WebhookEvent(
            idempotency_key=key,
            event_type=event.event_type,
            gateway_event_id=event.event_id,
            raw_body=raw_body.decode("utf-8"),
            payload=payload,
            status=WebhookEventStatus.RECEIVED.value,
        )
        self.db.add(row)
        try:
            self.db.commit()
            return row
        except IntegrityError:
            self.db.rollback()

        existing = (
            self.db.query(WebhookEvent)
            .filter(WebhookEvent.idempotency_key == key)
            .first()
        )
        existing.retry_count = (existing.retry_count or 0) + 1
        existing.last_retry_at = utc_now()
        self.db.commit()
        return existing

    # ------------------------------------------------------------------
    # ENTRY POINT
    # ------------------------------------------------------------------
    def apply(self, event: GatewayEvent, raw_body: bytes, payload: Optional[dict] = None) -> Outcome:
        try:
            return self._apply(event, raw_body, payload)
        except (OperationalError, DBAPIError) as e:
            if isinstance(e, IntegrityError):
                raise
            self.db.rollback()
            self.log.error(f"Storage error while applying {event.idempotency_key}: {e}")
            raise TransientStorageError(str(e)) from e

    def _apply(self, event: GatewayEvent, raw_body: bytes, payload: Optional[dict]) -> Outcome:
        started = time.monotonic()
        ledger = self.record(event, raw_body, payload)

        if ledger.status in SETTLED_STATES:
            self.log.info(f"Duplicate webhook {ledger.idempotency_key} (already {ledger.status})")
            return Outcome(
                status=ledger.status,
                detail="already applied",
                entity_type=ledger.related_entity_type,
                entity_id=ledger.related_entity_id,
                duplicate=True,
            )

        self._refunds_to_submit = []
        self._after_commit = []

        try:
            outcome = self._dispatch(event)
        except Exception as e:
            self.db.rollback()
            ledger.status = WebhookEventStatus.FAILED.value
            ledger.outcome = f"{type(e).__name__}: {e}"
            self.db.commit()
            raise

        ledger.status = outcome.status
        ledger.outcome = outcome.detail
        ledger.related_entity_type = outcome.entity_type
        ledger.related_entity_id = outcome.entity_id
        ledger.processed_at = utc_now()
        self.db.commit()

        for refund in self._refunds_to_submit:
            self.refunds.submit(refund)
        for callback in self._after_commit:
            callback()

        elapsed_ms = int((time.monotonic() - started) * 1000)
        self.log.info(
            f"Webhook {event.event_type} | key={ledger.idempotency_key} | "
            f"{outcome.status}: {outcome.detail} | {elapsed_ms}ms"
        )
        return outcome

    def _dispatch(self, event: GatewayEvent) -> Outcome:
        if isinstance(event, PaymentCaptured):
            return self._payment_captured(event)
        if isinstance(event, PaymentFailed):
            return self._payment_failed(event)
        if isinstance(event, RefundProcessed):
            return self._refund_settled(event, succeeded=True)
        if isinstance(event, RefundFailed):
            return self._refund_settled(event, succeeded=False)

        if isinstance(event, UnknownEvent):
            self.log.info(f"Unhandled webhook event: {event.event_type}")
            return Outcome(WebhookEventStatus.IGNORED.value, f"unhandled event type {event.event_type}")

        raise TypeError(f"unsupported event {type(event).__name__}")

    # ------------------------------------------------------------------
    # PAYMENT EVENTS
    # ------------------------------------------------------------------
    def _locked_for_order(self, order_id: Optional[str]):
        """(booking, payment) for a gateway order, locked booking first."""
        if not order_id:
            return None, None
        booking_id = (
            self.db.query(Payment.booking_id)
            .filter(Payment.gateway_order_id == order_id)
            .scalar()
        )
        if booking_id is None:
            return None, None
        return self.bookings.lock_with_payment(booking_id)

    def _flag(self, payment: Payment, reason: str) -> Outcome:
        payment.review_reason = reason
        self.db.flush()
        logger.bind(log_type="payment").warning(f"Payment {payment.id} flagged for review: {reason}")
        return Outcome(WebhookEventStatus.FLAGGED.value, reason, "payment", payment.id)

    def _payment_captured(self, event: PaymentCaptured) -> Outcome:
        entity = event.payment
        booking, payment = self._locked_for_order(entity.order_id)
        if payment is None:
            return Outcome(WebhookEventStatus.IGNORED.value, f"no payment for order {entity.order_id}")

        amount = from_paise(entity.amount)

        if payment.status == PaymentStatus.CAPTURED:
            if payment.gateway_payment_id == entity.id:
                return Outcome(WebhookEventStatus.IGNORED.value, "capture already recorded", "payment", payment.id)
            return self._flag(
                payment,
                f"second capture {entity.id} ({amount}) on order already captured by {payment.gateway_payment_id}",
            )

        if amount != Decimal(payment.total_amount):
            payment.captured_amount = amount
            return self._flag(
                payment,
                f"AmountMismatchError: captured {amount} via {entity.id}, expected {payment.total_amount}",
            )

        payment.status = PaymentStatus.CAPTURED
        payment.gateway_payment_id = entity.id
        payment.captured_amount = amount
        payment.captured_at = utc_now()
        payment.failure_reason = None
        if payment.review_reason is not None:
            logger.bind(log_type="payment").info(
                f"Payment {payment.id} review resolved by matching capture {entity.id}"
            )
            payment.review_reason = None
        if entity.method:
            payment.method = entity.method.upper()

        if booking.status == BookingStatus.PENDING:
            self.bookings.apply_confirm(booking)
            self._after_commit.append(lambda: self._notify("booking_confirmed", booking))
            return Outcome(WebhookEventStatus.PROCESSED.value, "booking confirmed", "booking", booking.id)

        if booking.status == BookingStatus.CANCELLED:
            # Money arrived for a slot that was already released
            opened = self.refunds.open_refund(payment, None, "Payment captured after booking was cancelled")
            if not opened.ok:
                return self._flag(payment, f"late capture could not be refunded: {opened.failure.message}")
            self._refunds_to_submit.append(opened.value)
            return Outcome(WebhookEventStatus.PROCESSED.value, "late capture refunded", "refund", opened.value.id)

        return Outcome(WebhookEventStatus.PROCESSED.value, f"capture recorded for {booking.status.value} booking", "booking", booking.id)

    def _payment_failed(self, event: PaymentFailed) -> Outcome:
        entity = event.payment
        booking, payment = self._locked_for_order(entity.order_id)
        if payment is None:
            return Outcome(WebhookEventStatus.IGNORED.value, f"no payment for order {entity.order_id}")

        if payment.status != PaymentStatus.CREATED:
            return Outcome(
                WebhookEventStatus.IGNORED.value,
                f"payment already {payment.status.value}",
                "payment",
                payment.id,
            )

        payment.status = PaymentStatus.FAILED
        payment.failure_reason = entity.error_description or f"Error code: {entity.error_code}"

        if booking.status == BookingStatus.PENDING:
            self.bookings.apply_cancel(booking, SYSTEM, PAYMENT_FAILED_REASON)
            self._after_commit.append(lambda: self._invalidate(booking))
            self._after_commit.append(lambda: self._notify("booking_cancelled", booking, reason=PAYMENT_FAILED_REASON))
            return Outcome(WebhookEventStatus.PROCESSED.value, "payment failed, booking cancelled", "booking", booking.id)

        return Outcome(WebhookEventStatus.PROCESSED.value, "payment failed", "payment", payment.id)

    # ------------------------------------------------------------------
    # REFUND EVENTS
    # ------------------------------------------------------------------
    def _find_refund(self, entity) -> Optional[Refund]:
        refund = (
            self.db.query(Refund)
            .filter(Refund.gateway_refund_id == entity.id)
            .with_for_update()
            .first()
        )
        if refund is not None:
            return refund

        # The webhook can beat our own write of the gateway refund id
        local_id = entity.local_refund_id
        if local_id is not None:
            refund = (
                self.db.query(Refund)
                .filter(Refund.id == local_id, Refund.gateway_refund_id.is_(None))
                .with_for_update()
                .first()
            )
            if refund is not None:
                refund.gateway_refund_id = entity.id
        return refund

    def _refund_settled(self, event, succeeded: bool) -> Outcome:
        entity = event.refund
        refund = self._find_refund(entity)

        if refund is None:
            if not succeeded:
                return Outcome(WebhookEventStatus.IGNORED.value, f"unknown refund {entity.id}")

            payment = (
                self.db.query(Payment)
                .filter(Payment.gateway_payment_id == entity.payment_id)
                .with_for_update()
                .first()
            )
            if payment is None:
                return Outcome(WebhookEventStatus.IGNORED.value, f"no payment {entity.payment_id}")

            recorded = self.refunds.record_external(payment, entity.id, entity.amount)
            if not recorded.ok:
                return self._flag(payment, recorded.failure.message)
            return Outcome(WebhookEventStatus.PROCESSED.value, "external refund recorded", "refund", recorded.value.id)

        if refund.status != RefundStatus.PENDING:
            return Outcome(
                WebhookEventStatus.IGNORED.value,
                f"refund already {refund.status.value}",
                "refund",
                refund.id,
            )

        settled = self.refunds.settle(refund, succeeded, failure_reason=None if succeeded else "gateway reported failure")
        if not settled.ok:
            return self._flag(refund.payment, settled.failure.message)

        return Outcome(
            WebhookEventStatus.PROCESSED.value,
            f"refund {refund.status.value.lower()}",
            "refund",
            refund.id,
        )

    # ------------------------------------------------------------------
    def _invalidate(self, booking):
        if self.cache is not None:
            self.cache.invalidate(booking.court_id, booking.booking_date)

    def _notify(self, kind, booking, **extra):
        if self.notifier is not None:
            self.notifier.notify(kind, booking, **extra)

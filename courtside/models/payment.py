from decimal import Decimal

from sqlalchemy import (
    Column, DateTime, Enum as SAEnum, ForeignKey, Integer, Numeric, String, Text,
)
from sqlalchemy.orm import relationship

from courtside.db.session import Base
from courtside.models.enums import PaymentStatus, RefundStatus
from courtside.utils.timeutils import utc_now


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)

    # Booking owns its payment (1:1)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)

    gateway_order_id = Column(String, nullable=True, unique=True, index=True)
    gateway_payment_id = Column(String, nullable=True, unique=True, index=True)

    # Fee breakdown
    amount = Column(Numeric(10, 2), nullable=False)
    processing_fee = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    gst = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    total_amount = Column(Numeric(10, 2), nullable=False)

    currency = Column(String(3), nullable=False, default="INR")
    method = Column(String, nullable=True)

    status = Column(
        SAEnum(PaymentStatus, name="paymentstatus"),
        nullable=False,
        default=PaymentStatus.CREATED,
    )
    failure_reason = Column(String, nullable=True)

    # Set when a capture cannot be applied automatically (operator queue)
    review_reason = Column(Text, nullable=True)
    captured_amount = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
    captured_at = Column(DateTime, nullable=True)

    booking = relationship("Booking", back_populates="payment")
    refunds = relationship("Refund", back_populates="payment", order_by="Refund.id")

    @property
    def needs_review(self) -> bool:
        return self.review_reason is not None

    def refunded_total(self, *statuses) -> Decimal:
        statuses = statuses or (RefundStatus.COMPLETED,)
        return sum(
            (Decimal(r.amount) for r in self.refunds if r.status in statuses),
            Decimal("0"),
        )

    @property
    def refundable_balance(self) -> Decimal:
        """Captured total minus refunds completed or still in flight."""
        if self.status != PaymentStatus.CAPTURED:
            return Decimal("0")
        held = self.refunded_total(RefundStatus.COMPLETED, RefundStatus.PENDING)
        return Decimal(self.total_amount) - held


class Refund(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)

    gateway_refund_id = Column(String, nullable=True, unique=True, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(
        SAEnum(RefundStatus, name="refundstatus"),
        nullable=False,
        default=RefundStatus.PENDING,
    )
    reason = Column(String, nullable=True)
    failure_reason = Column(String, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    processed_at = Column(DateTime, nullable=True)

    payment = relationship("Payment", back_populates="refunds")

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class RefundCreate(BaseModel):
    # Omitted amount refunds the whole remaining balance
    amount: Optional[Decimal] = Field(None, gt=0)
    reason: Optional[str] = Field(None, max_length=500)


class RefundOut(BaseModel):
    id: int
    amount: Decimal
    status: str
    reason: Optional[str] = None
    gateway_refund_id: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    refunded_to_date: Optional[Decimal] = None


class RefundList(BaseModel):
    payment_id: int
    total_amount: Decimal
    refunded_total: Decimal
    pending_total: Decimal
    remaining_balance: Decimal
    refunds: List[RefundOut]


class VerifyCheckout(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class PaymentReviewOut(BaseModel):
    id: int
    booking_id: int
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    status: str
    total_amount: Decimal
    captured_amount: Optional[Decimal] = None
    review_reason: str
    updated_at: datetime

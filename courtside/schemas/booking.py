from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from courtside.models.enums import BookingStatus, PaymentMethod


class BookingCreate(BaseModel):
    court_id: int
    date: date
    start_time: time
    duration_hours: Decimal = Field(..., gt=0)

    # Price the client was shown; rejected if it no longer matches
    quoted_amount: Optional[Decimal] = None
    method: Optional[PaymentMethod] = None


class BookingOut(BaseModel):
    id: int
    user_id: int
    court_id: int
    booking_date: date
    start_time: time
    end_time: time
    status: BookingStatus
    total_amount: Decimal
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    booking_id: int
    payment_id: int
    gateway_order_id: str
    key_id: Optional[str] = None
    currency: str
    amount: Decimal
    processing_fee: Decimal
    gst: Decimal
    total_amount: Decimal


class BookingCreatedOut(BaseModel):
    booking: BookingOut
    order: OrderOut


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class CancelOut(BaseModel):
    booking: BookingOut
    refund_id: Optional[int] = None
    refund_amount: Optional[Decimal] = None
    refund_status: Optional[str] = None

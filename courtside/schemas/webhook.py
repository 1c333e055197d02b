"""Gateway webhook events as a closed set of kinds.

Known event types parse into a typed event carrying the fields its handler
needs; anything else becomes ``UnknownEvent`` and is logged, never treated
as a failure.
"""

import hashlib
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ValidationError


class PaymentEntity(BaseModel):
    id: str
    order_id: Optional[str] = None
    amount: int  # paise
    currency: str = "INR"
    status: str
    method: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None


class RefundEntity(BaseModel):
    id: str
    payment_id: str
    amount: int  # paise
    status: Optional[str] = None
    notes: Union[Dict[str, Any], list, None] = None

    @property
    def local_refund_id(self) -> Optional[int]:
        # Set by us when the refund was requested through the API
        if isinstance(self.notes, dict):
            value = self.notes.get("refund_id")
            if value is not None and str(value).isdigit():
                return int(value)
        return None


class _Event(BaseModel):
    event_id: Optional[str] = None

    @property
    def idempotency_key(self) -> str:
        if self.event_id:
            return f"evt:{self.event_id}"
        return f"{self.event_type}:{self.entity_id}"


class PaymentCaptured(_Event):
    event_type: Literal["payment.captured"] = "payment.captured"
    payment: PaymentEntity

    @property
    def entity_id(self) -> str:
        return self.payment.id


class PaymentFailed(_Event):
    event_type: Literal["payment.failed"] = "payment.failed"
    payment: PaymentEntity

    @property
    def entity_id(self) -> str:
        return self.payment.id


class RefundProcessed(_Event):
    event_type: Literal["refund.processed"] = "refund.processed"
    refund: RefundEntity

    @property
    def entity_id(self) -> str:
        return self.refund.id


class RefundFailed(_Event):
    event_type: Literal["refund.failed"] = "refund.failed"
    refund: RefundEntity

    @property
    def entity_id(self) -> str:
        return self.refund.id


class UnknownEvent(_Event):
    event_type: str
    body_digest: str
    raw: Dict[str, Any] = {}

    @property
    def entity_id(self) -> str:
        return self.body_digest


GatewayEvent = Union[PaymentCaptured, PaymentFailed, RefundProcessed, RefundFailed, UnknownEvent]

_PAYMENT_EVENTS = {"payment.captured": PaymentCaptured, "payment.failed": PaymentFailed}
_REFUND_EVENTS = {"refund.processed": RefundProcessed, "refund.failed": RefundFailed}


class MalformedEvent(ValueError):
    pass


def _entity(payload: dict, name: str) -> dict:
    try:
        return payload["payload"][name]["entity"]
    except (KeyError, TypeError):
        raise MalformedEvent(f"missing payload.{name}.entity")


def parse_event(payload: Any, raw_body: bytes, event_id: Optional[str] = None) -> GatewayEvent:
    if not isinstance(payload, dict) or not isinstance(payload.get("event"), str):
        raise MalformedEvent("missing event type")

    event_type = payload["event"]
    try:
        if event_type in _PAYMENT_EVENTS:
            return _PAYMENT_EVENTS[event_type](
                event_id=event_id, payment=_entity(payload, "payment")
            )
        if event_type in _REFUND_EVENTS:
            return _REFUND_EVENTS[event_type](
                event_id=event_id, refund=_entity(payload, "refund")
            )
    except ValidationError as e:
        raise MalformedEvent(str(e))

    return UnknownEvent(
        event_id=event_id,
        event_type=event_type,
        body_digest=hashlib.sha256(raw_body).hexdigest(),
        raw=payload,
    )

import hashlib
import hmac
import json
from datetime import date, time, timedelta
from decimal import Decimal

from jose import jwt

from courtside.models.enums import FacilityStatus
from courtside.models.facility import Court, Facility
from courtside.schemas.webhook import parse_event
from courtside.utils.pricing import to_paise

JWT_SECRET = "test-jwt-secret"
WEBHOOK_SECRET = "test-webhook-secret"
KEY_SECRET = "test-key-secret"

OWNER_ID = 100
USER_ID = 1
OTHER_USER_ID = 2


def future_day(days: int = 7) -> date:
    return date.today() + timedelta(days=days)


def make_court(
    db,
    opening=time(6, 0),
    closing=time(22, 0),
    price=Decimal("500.00"),
    owner_id=OWNER_ID,
    facility_status=FacilityStatus.APPROVED,
    is_active=True,
    facility=None,
    name="Court 1",
):
    if facility is None:
        facility = Facility(owner_id=owner_id, name="Smash Arena", city="Pune", status=facility_status)
        db.add(facility)

    court = Court(
        facility=facility,
        name=name,
        sport_type="badminton",
        opening_time=opening,
        closing_time=closing,
        price_per_hour=price,
        is_active=is_active,
    )
    db.add(court)
    db.commit()
    return court


def token_for(user_id: int, role: str = "user") -> str:
    return jwt.encode({"sub": str(user_id), "role": role}, JWT_SECRET, algorithm="HS256")


def auth_header(user_id: int = USER_ID, role: str = "user") -> dict:
    return {"Authorization": f"Bearer {token_for(user_id, role)}"}


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------
# GATEWAY PAYLOADS
# ---------------------------------------------------------------------
def payment_payload(event: str, order_id: str, payment_id: str, amount, method="card", error=None) -> dict:
    entity = {
        "id": payment_id,
        "entity": "payment",
        "order_id": order_id,
        "amount": to_paise(amount),
        "currency": "INR",
        "status": "captured" if event == "payment.captured" else "failed",
        "method": method,
    }
    if error:
        entity["error_code"] = "BAD_REQUEST_ERROR"
        entity["error_description"] = error
    return {"entity": "event", "event": event, "payload": {"payment": {"entity": entity}}}


def refund_payload(event: str, refund_id: str, payment_id: str, amount, local_refund_id=None) -> dict:
    notes = {"refund_id": str(local_refund_id)} if local_refund_id is not None else {}
    entity = {
        "id": refund_id,
        "entity": "refund",
        "payment_id": payment_id,
        "amount": to_paise(amount),
        "status": "processed" if event == "refund.processed" else "failed",
        "notes": notes,
    }
    return {"entity": "event", "event": event, "payload": {"refund": {"entity": entity}}}


def as_event(payload: dict, event_id=None):
    """Parsed event plus the exact bytes the gateway would have sent."""
    raw = json.dumps(payload).encode()
    return parse_event(payload, raw, event_id=event_id), raw

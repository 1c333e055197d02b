"""Slot availability for a court on a date.

Candidate slots are laid end to end from opening time in fixed steps; a
trailing slot that would run past closing time is dropped, never
truncated. A slot is unavailable when it intersects a live booking or a
blocked interval, or (for today) when it has already started.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from courtside.core.exceptions import ErrorKind, Result
from courtside.models.booking import Booking
from courtside.models.enums import ACTIVE_BOOKING_STATUSES, FacilityStatus
from courtside.models.facility import Court
from courtside.models.slot import TimeSlot
from courtside.utils.timeutils import format_hhmm, from_minutes, overlaps, to_minutes

AVAILABLE = "available"
BOOKED = "booked"
BLOCKED = "blocked"
PAST = "past"

Span = Tuple[int, int]


@dataclass(frozen=True)
class SlotState:
    start_time: time
    end_time: time
    status: str
    reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.status == AVAILABLE

    def to_dict(self) -> dict:
        out = {
            "start_time": format_hhmm(self.start_time),
            "end_time": format_hhmm(self.end_time),
            "available": self.available,
            "status": self.status,
        }
        if self.reason:
            out["reason"] = self.reason
        return out


def candidate_spans(opening: time, closing: time, slot_minutes: int) -> List[Span]:
    if slot_minutes <= 0:
        raise ValueError("slot duration must be positive")

    open_m, close_m = to_minutes(opening), to_minutes(closing)
    spans = []
    start = open_m
    while start + slot_minutes <= close_m:
        spans.append((start, start + slot_minutes))
        start += slot_minutes
    return spans


def compute_slots(
    opening: time,
    closing: time,
    slot_minutes: int,
    booked: Iterable[Span] = (),
    blocked: Iterable[Tuple[int, int, Optional[str]]] = (),
    not_before: Optional[int] = None,
) -> List[SlotState]:
    """Pure availability grid.

    ``booked`` and ``blocked`` are minute-offset spans; ``not_before`` is the
    current minute of day when the target date is today.
    """
    booked = list(booked)
    blocked = list(blocked)
    slots = []

    for start, end in candidate_spans(opening, closing, slot_minutes):
        status, reason = AVAILABLE, None

        if not_before is not None and start <= not_before:
            status, reason = PAST, "This time slot has already passed"
        elif any(overlaps(start, end, b_start, b_end) for b_start, b_end in booked):
            status, reason = BOOKED, "Already booked"
        else:
            for b_start, b_end, why in blocked:
                if overlaps(start, end, b_start, b_end):
                    status, reason = BLOCKED, why or "Not available"
                    break

        slots.append(SlotState(from_minutes(start), from_minutes(end), status, reason))

    return slots


def occupied_spans(db: Session, court_id: int, day: date):
    bookings = db.query(Booking.start_time, Booking.end_time).filter(
        Booking.court_id == court_id,
        Booking.booking_date == day,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
    ).all()

    blocked = db.query(TimeSlot.start_time, TimeSlot.end_time, TimeSlot.block_reason).filter(
        TimeSlot.court_id == court_id,
        TimeSlot.date == day,
        TimeSlot.is_blocked.is_(True),
    ).all()

    return (
        [(to_minutes(b.start_time), to_minutes(b.end_time)) for b in bookings],
        [(to_minutes(t.start_time), to_minutes(t.end_time), t.block_reason) for t in blocked],
    )


def get_court_availability(
    db: Session,
    court_id: int,
    day: date,
    slot_minutes: int,
    now: datetime,
    cache=None,
) -> Result[dict]:
    court = (
        db.query(Court)
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

    # Court status is checked on every call; only the slot grid is cached
    if cache is not None:
        cached = cache.get(court_id, day)
        if cached is not None:
            return Result.success(cached)

    if day < now.date():
        not_before = 24 * 60  # whole day has passed
    elif day == now.date():
        not_before = now.hour * 60 + now.minute
    else:
        not_before = None

    booked, blocked = occupied_spans(db, court.id, day)
    slots = compute_slots(
        court.opening_time, court.closing_time, slot_minutes, booked, blocked, not_before
    )

    body = {
        "court_id": court.id,
        "date": day.isoformat(),
        "operating_hours": {
            "opening": format_hhmm(court.opening_time),
            "closing": format_hhmm(court.closing_time),
        },
        "price_per_hour": str(court.price_per_hour),
        "slots": [s.to_dict() for s in slots],
        "summary": {
            "total": len(slots),
            AVAILABLE: sum(1 for s in slots if s.status == AVAILABLE),
            BOOKED: sum(1 for s in slots if s.status == BOOKED),
            BLOCKED: sum(1 for s in slots if s.status == BLOCKED),
            PAST: sum(1 for s in slots if s.status == PAST),
        },
    }

    if cache is not None:
        cache.set(court_id, day, body)

    return Result.success(body)

"""Owner/admin blocking of court time.

A blocked interval is a ``TimeSlot`` row holding claims on the same grid
cells bookings use, so blocking can never overlap a live booking and a
booking can never land on a blocked interval.
"""

from datetime import date, time
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from courtside.core.auth_utils import Principal
from courtside.core.exceptions import ErrorKind, Result
from courtside.core.logging_config import get_logger
from courtside.models.enums import ActorRole
from courtside.models.facility import Court
from courtside.models.slot import TimeSlot
from courtside.services.reservation import ReservationGuard
from courtside.utils.timeutils import format_hhmm

logger = get_logger()


class SlotBlocker:
    def __init__(self, db: Session, guard: ReservationGuard, cache=None):
        self.db = db
        self.guard = guard
        self.cache = cache
        self.log = logger.bind(log_type="admin")

    def _court_for(self, court_id: int, actor: Principal) -> Result[Court]:
        court = (
            self.db.query(Court)
            .options(joinedload(Court.facility))
            .filter(Court.id == court_id)
            .first()
        )
        if not court:
            return Result.fail(ErrorKind.NOT_FOUND, "Court not found", court_id=court_id)
        if actor.role == ActorRole.OWNER and court.facility.owner_id != actor.id:
            return Result.fail(ErrorKind.FORBIDDEN, "You do not own this facility")
        return Result.success(court)

    def block(self, court_id: int, day: date, start: time, end: time, actor: Principal, reason: Optional[str] = None) -> Result[TimeSlot]:
        found = self._court_for(court_id, actor)
        if not found.ok:
            return found
        court = found.value

        if start >= end:
            return Result.fail(ErrorKind.INVALID_WINDOW, "Start time must be before end time")
        if not self.guard.is_aligned(start, end):
            return Result.fail(
                ErrorKind.INVALID_WINDOW,
                f"Start and end must fall on {self.guard.granularity}-minute boundaries",
            )
        if start < court.opening_time or end > court.closing_time:
            return Result.fail(ErrorKind.INVALID_WINDOW, "Blocked time is outside operating hours")

        slot = TimeSlot(
            court_id=court.id,
            date=day,
            start_time=start,
            end_time=end,
            is_blocked=True,
            block_reason=reason,
        )
        self.db.add(slot)

        reserved = self.guard.try_reserve(self.db, court.id, day, start, end, time_slot=slot)
        if not reserved.ok:
            return reserved

        self.db.commit()
        if self.cache is not None:
            self.cache.invalidate(court.id, day)

        self.log.info(
            f"Slot Blocked | court={court.id} | date={day} | "
            f"{format_hhmm(start)}-{format_hhmm(end)} | by={actor.role.value}:{actor.id}"
        )
        return Result.success(slot)

    def unblock(self, court_id: int, slot_id: int, actor: Principal) -> Result[TimeSlot]:
        found = self._court_for(court_id, actor)
        if not found.ok:
            return found

        slot = (
            self.db.query(TimeSlot)
            .filter(TimeSlot.id == slot_id, TimeSlot.court_id == court_id)
            .first()
        )
        if not slot:
            return Result.fail(ErrorKind.NOT_FOUND, "Blocked slot not found")

        self.guard.release(self.db, time_slot_id=slot.id)
        self.db.expire(slot, ["claims"])
        self.db.delete(slot)
        self.db.commit()

        if self.cache is not None:
            self.cache.invalidate(court_id, slot.date)

        self.log.info(f"Slot Unblocked | court={court_id} | slot={slot_id} | by={actor.role.value}:{actor.id}")
        return Result.success(slot)

"""Mutual exclusion over (court, date, interval).

Every interval is cut into fixed grid cells and each cell becomes a row in
``slot_claims``; the table's unique index on (court_id, date, cell_start)
makes the overlap check and the insert one indivisible step in the
database. Two overlapping intervals always share at least one cell, so
only one of two concurrent transactions can commit.
"""

from dataclasses import dataclass
from datetime import date, time
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from courtside.core.exceptions import ErrorKind, Result
from courtside.core.logging_config import get_logger
from courtside.models.slot import SlotClaim
from courtside.utils.timeutils import format_hhmm, from_minutes, to_minutes

logger = get_logger()


@dataclass(frozen=True)
class Reserved:
    court_id: int
    date: date
    cells: List[time]


class ReservationGuard:
    def __init__(self, granularity_minutes: int = 15):
        if granularity_minutes <= 0 or (24 * 60) % granularity_minutes:
            raise ValueError("granularity must divide a day into whole cells")
        self.granularity = granularity_minutes

    def is_aligned(self, start: time, end: time) -> bool:
        return (
            start.second == 0 and end.second == 0
            and to_minutes(start) % self.granularity == 0
            and to_minutes(end) % self.granularity == 0
        )

    def cells(self, start: time, end: time) -> List[time]:
        if not self.is_aligned(start, end):
            raise ValueError(f"interval must align to {self.granularity}-minute cells")
        return [
            from_minutes(m)
            for m in range(to_minutes(start), to_minutes(end), self.granularity)
        ]

    def try_reserve(
        self,
        db: Session,
        court_id: int,
        day: date,
        start: time,
        end: time,
        booking=None,
        time_slot=None,
    ) -> Result[Reserved]:
        """Claim [start, end) for a booking or a blocked time slot.

        Must run inside the unit of work that inserts the holder. On conflict
        the whole transaction is rolled back, holder included, and a
        SlotUnavailable failure is returned.
        """
        if (booking is None) == (time_slot is None):
            raise ValueError("exactly one of booking or time_slot must hold the claim")

        cells = self.cells(start, end)
        db.add_all([
            SlotClaim(
                court_id=court_id,
                date=day,
                cell_start=cell,
                booking=booking,
                time_slot=time_slot,
            )
            for cell in cells
        ])

        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.bind(log_type="booking").info(
                f"Slot claim lost | court={court_id} | date={day} | "
                f"{format_hhmm(start)}-{format_hhmm(end)}"
            )
            return Result.fail(
                ErrorKind.SLOT_UNAVAILABLE,
                "Slot no longer available",
                court_id=court_id,
                date=day.isoformat(),
                start_time=format_hhmm(start),
                end_time=format_hhmm(end),
            )

        return Result.success(Reserved(court_id=court_id, date=day, cells=cells))

    def release(self, db: Session, booking_id: Optional[int] = None, time_slot_id: Optional[int] = None) -> int:
        """Drop the holder's claims; the caller commits."""
        q = db.query(SlotClaim)
        if booking_id is not None:
            q = q.filter(SlotClaim.booking_id == booking_id)
        elif time_slot_id is not None:
            q = q.filter(SlotClaim.time_slot_id == time_slot_id)
        else:
            raise ValueError("booking_id or time_slot_id required")

        return q.delete(synchronize_session=False)

"""Popular-venue ranking with a pluggable ordering policy.

Only approved facilities are ranked. A policy is a sort key over
``VenueStats``; callers choose one by name.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from courtside.models.booking import Booking
from courtside.models.enums import BookingStatus, FacilityStatus
from courtside.models.facility import Court, Facility


@dataclass(frozen=True)
class VenueStats:
    facility_id: int
    name: str
    city: str
    court_count: int
    booking_count: int
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "facility_id": self.facility_id,
            "name": self.name,
            "city": self.city,
            "court_count": self.court_count,
            "booking_count": self.booking_count,
        }


def by_court_count(v: VenueStats):
    # More courts first, newer venues break ties
    return (-v.court_count, -v.created_at.timestamp(), v.facility_id)


def by_court_count_then_bookings(v: VenueStats):
    return (-v.court_count, -v.booking_count, -v.created_at.timestamp(), v.facility_id)


RANKING_POLICIES: Dict[str, Callable[[VenueStats], tuple]] = {
    "by_court_count": by_court_count,
    "by_court_count_then_bookings": by_court_count_then_bookings,
}

DEFAULT_POLICY = "by_court_count"


def venue_stats(db: Session) -> List[VenueStats]:
    court_counts = (
        db.query(Court.facility_id, func.count(Court.id).label("courts"))
        .filter(Court.is_active.is_(True))
        .group_by(Court.facility_id)
        .subquery()
    )
    booking_counts = (
        db.query(Court.facility_id, func.count(Booking.id).label("bookings"))
        .join(Booking, Booking.court_id == Court.id)
        .filter(Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.COMPLETED]))
        .group_by(Court.facility_id)
        .subquery()
    )

    rows = (
        db.query(
            Facility,
            func.coalesce(court_counts.c.courts, 0),
            func.coalesce(booking_counts.c.bookings, 0),
        )
        .outerjoin(court_counts, court_counts.c.facility_id == Facility.id)
        .outerjoin(booking_counts, booking_counts.c.facility_id == Facility.id)
        .filter(Facility.status == FacilityStatus.APPROVED)
        .all()
    )

    return [
        VenueStats(
            facility_id=f.id,
            name=f.name,
            city=f.city,
            court_count=int(courts),
            booking_count=int(bookings),
            created_at=f.created_at,
        )
        for f, courts, bookings in rows
    ]


def popular_venues(db: Session, order: str = DEFAULT_POLICY, limit: int = 10) -> List[VenueStats]:
    try:
        key = RANKING_POLICIES[order]
    except KeyError:
        raise ValueError(f"unknown ranking policy: {order}")

    return sorted(venue_stats(db), key=key)[:limit]

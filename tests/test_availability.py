from datetime import datetime, time, timedelta

import pytest

from courtside.core.exceptions import ErrorKind
from courtside.models.booking import Booking
from courtside.models.enums import BookingStatus, FacilityStatus
from courtside.models.slot import TimeSlot
from courtside.services.availability import (
    BLOCKED, BOOKED, PAST, candidate_spans, compute_slots, get_court_availability,
)
from courtside.utils.timeutils import to_minutes
from tests.fakes import DictCache
from tests.factories import USER_ID, future_day, make_court


def _span(start, end):
    return (to_minutes(start), to_minutes(end))


def _book(db, court, day, start, end, status=BookingStatus.CONFIRMED):
    booking = Booking(
        user_id=USER_ID,
        court_id=court.id,
        booking_date=day,
        start_time=start,
        end_time=end,
        status=status,
        total_amount=500,
    )
    db.add(booking)
    db.commit()
    return booking


class TestCandidateGrid:
    def test_full_day_grid(self):
        slots = compute_slots(time(6, 0), time(22, 0), 60)

        assert len(slots) == 16
        assert (slots[0].start_time, slots[0].end_time) == (time(6, 0), time(7, 0))
        assert (slots[-1].start_time, slots[-1].end_time) == (time(21, 0), time(22, 0))
        assert all(s.available for s in slots)

    def test_trailing_partial_slot_is_dropped(self):
        spans = candidate_spans(time(6, 0), time(7, 30), 60)
        assert spans == [(360, 420)]

    def test_rejects_non_positive_duration(self):
        with pytest.raises(ValueError):
            candidate_spans(time(6, 0), time(7, 0), 0)


class TestSlotStatus:
    def test_overlapping_booking_marks_slot_booked(self):
        slots = compute_slots(
            time(9, 0), time(13, 0), 60, booked=[_span(time(10, 30), time(12, 0))]
        )
        statuses = [s.status for s in slots]
        assert statuses == ["available", BOOKED, BOOKED, "available"]

    def test_adjacent_booking_does_not_block(self):
        slots = compute_slots(
            time(9, 0), time(11, 0), 60, booked=[_span(time(10, 0), time(11, 0))]
        )
        assert slots[0].available
        assert not slots[1].available

    def test_blocked_interval_carries_reason(self):
        slots = compute_slots(
            time(9, 0), time(11, 0), 60,
            blocked=[(to_minutes(time(9, 0)), to_minutes(time(10, 0)), "Maintenance")],
        )
        assert slots[0].status == BLOCKED
        assert slots[0].to_dict()["reason"] == "Maintenance"
        assert slots[1].available

    def test_started_slots_are_past(self):
        slots = compute_slots(time(6, 0), time(12, 0), 60, not_before=9 * 60 + 30)
        assert [s.status for s in slots] == [PAST, PAST, PAST, PAST, "available", "available"]


class TestCourtAvailability:
    def test_reports_bookings_and_summary(self, db):
        court = make_court(db)
        day = future_day()
        _book(db, court, day, time(10, 0), time(11, 0))
        _book(db, court, day, time(12, 0), time(13, 0), status=BookingStatus.CANCELLED)

        result = get_court_availability(db, court.id, day, 60, now=datetime.now())

        assert result.ok
        body = result.value
        assert body["operating_hours"] == {"opening": "06:00", "closing": "22:00"}
        assert body["summary"]["total"] == 16
        assert body["summary"][BOOKED] == 1
        assert body["summary"]["available"] == 15

        by_start = {s["start_time"]: s for s in body["slots"]}
        assert by_start["10:00"]["available"] is False
        assert by_start["12:00"]["available"] is True

    def test_blocked_time_slot_is_reported(self, db):
        court = make_court(db)
        day = future_day()
        db.add(TimeSlot(
            court_id=court.id, date=day, start_time=time(6, 0), end_time=time(8, 0),
            is_blocked=True, block_reason="Tournament",
        ))
        db.commit()

        body = get_court_availability(db, court.id, day, 60, now=datetime.now()).value
        assert body["summary"][BLOCKED] == 2

    def test_today_marks_started_slots_past(self, db):
        court = make_court(db)
        now = datetime.combine(future_day(), time(8, 15))

        body = get_court_availability(db, court.id, now.date(), 60, now=now).value
        assert body["summary"][PAST] == 3

    def test_past_date_is_entirely_past(self, db):
        court = make_court(db)
        now = datetime.combine(future_day(), time(8, 0))

        body = get_court_availability(db, court.id, now.date() - timedelta(days=1), 60, now=now).value
        assert body["summary"][PAST] == body["summary"]["total"]

    def test_unknown_court(self, db):
        result = get_court_availability(db, 999, future_day(), 60, now=datetime.now())
        assert result.failure.kind == ErrorKind.NOT_FOUND

    def test_inactive_court(self, db):
        court = make_court(db, is_active=False)
        result = get_court_availability(db, court.id, future_day(), 60, now=datetime.now())
        assert result.failure.kind == ErrorKind.COURT_INACTIVE

    def test_unapproved_facility(self, db):
        court = make_court(db, facility_status=FacilityStatus.PENDING)
        result = get_court_availability(db, court.id, future_day(), 60, now=datetime.now())
        assert result.failure.kind == ErrorKind.COURT_INACTIVE
        assert result.failure.details["facility_status"] == "PENDING"

    def test_results_are_cached(self, db):
        court = make_court(db)
        day = future_day()
        cache = DictCache()

        first = get_court_availability(db, court.id, day, 60, now=datetime.now(), cache=cache).value
        assert cache.store[cache.key(court.id, day)] == first

        _book(db, court, day, time(6, 0), time(7, 0))
        cached = get_court_availability(db, court.id, day, 60, now=datetime.now(), cache=cache).value
        assert cached["summary"][BOOKED] == 0

        cache.invalidate(court.id, day)
        fresh = get_court_availability(db, court.id, day, 60, now=datetime.now(), cache=cache).value
        assert fresh["summary"][BOOKED] == 1

    @pytest.mark.parametrize("deactivate", [
        lambda court: setattr(court, "is_active", False),
        lambda court: setattr(court.facility, "status", FacilityStatus.SUSPENDED),
    ])
    def test_cached_grid_is_not_served_for_closed_court(self, db, deactivate):
        court = make_court(db)
        day = future_day()
        cache = DictCache()

        assert get_court_availability(db, court.id, day, 60, now=datetime.now(), cache=cache).ok

        deactivate(court)
        db.commit()

        result = get_court_availability(db, court.id, day, 60, now=datetime.now(), cache=cache)
        assert result.failure.kind == ErrorKind.COURT_INACTIVE

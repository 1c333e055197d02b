from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Integer,
    String, Time, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from courtside.db.session import Base
from courtside.utils.timeutils import utc_now


class TimeSlot(Base):
    """Pre-materialized grid entry; used here for owner-blocked intervals."""

    __tablename__ = "time_slots"

    id = Column(Integer, primary_key=True, index=True)
    court_id = Column(Integer, ForeignKey("courts.id"), nullable=False)

    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    is_blocked = Column(Boolean, default=False, nullable=False)
    block_reason = Column(String, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    claims = relationship("SlotClaim", back_populates="time_slot")

    __table_args__ = (
        UniqueConstraint("court_id", "date", "start_time", name="uq_time_slots_court_date_start"),
        CheckConstraint("start_time < end_time", name="ck_time_slots_window"),
    )


class SlotClaim(Base):
    """One claimed grid cell of a court on a date.

    The unique constraint over (court_id, date, cell_start) is what keeps
    two live bookings from overlapping: every booking claims each cell it
    covers in the same transaction that inserts it.
    """

    __tablename__ = "slot_claims"

    id = Column(Integer, primary_key=True)
    court_id = Column(Integer, ForeignKey("courts.id"), nullable=False)
    date = Column(Date, nullable=False)
    cell_start = Column(Time, nullable=False)

    # Exactly one holder: a booking or a blocked time slot
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    time_slot_id = Column(Integer, ForeignKey("time_slots.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    booking = relationship("Booking", back_populates="claims")
    time_slot = relationship("TimeSlot", back_populates="claims")

    __table_args__ = (
        UniqueConstraint("court_id", "date", "cell_start", name="uq_slot_claims_cell"),
        CheckConstraint(
            "(booking_id IS NULL) <> (time_slot_id IS NULL)",
            name="ck_slot_claims_single_holder",
        ),
    )

from sqlalchemy import (
    CheckConstraint, Column, Date, DateTime, Enum as SAEnum, ForeignKey, Index,
    Integer, Numeric, String, Time,
)
from sqlalchemy.orm import relationship

from courtside.db.session import Base
from courtside.models.enums import BookingStatus
from courtside.utils.timeutils import combine, utc_now


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    court_id = Column(Integer, ForeignKey("courts.id"), nullable=False)

    booking_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    status = Column(
        SAEnum(BookingStatus, name="bookingstatus"),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    total_amount = Column(Numeric(10, 2), nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # CANCELLATION INFO
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String, nullable=True)  # user | owner | admin | system
    cancel_reason = Column(String, nullable=True)

    court = relationship("Court")
    payment = relationship("Payment", back_populates="booking", uselist=False)
    claims = relationship("SlotClaim", back_populates="booking")

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_bookings_window"),
        Index("ix_bookings_court_date", "court_id", "booking_date"),
        Index("ix_bookings_status_created", "status", "created_at"),
    )

    @property
    def starts_at(self):
        return combine(self.booking_date, self.start_time)

    @property
    def ends_at(self):
        return combine(self.booking_date, self.end_time)


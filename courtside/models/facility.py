from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Enum as SAEnum, ForeignKey,
    Integer, Numeric, String, Time,
)
from sqlalchemy.orm import relationship

from courtside.db.session import Base
from courtside.models.enums import FacilityStatus
from courtside.utils.timeutils import utc_now


class Facility(Base):
    __tablename__ = "facilities"

    id = Column(Integer, primary_key=True, index=True)

    # Ownership
    owner_id = Column(Integer, nullable=False, index=True)

    name = Column(String, nullable=False)
    city = Column(String, nullable=True)

    # Admin approval gates whether any court is bookable
    status = Column(
        SAEnum(FacilityStatus, name="facilitystatus"),
        nullable=False,
        default=FacilityStatus.PENDING,
    )

    created_at = Column(DateTime, default=utc_now, nullable=False)

    courts = relationship("Court", back_populates="facility")


class Court(Base):
    __tablename__ = "courts"

    id = Column(Integer, primary_key=True, index=True)
    facility_id = Column(Integer, ForeignKey("facilities.id"), nullable=False, index=True)

    name = Column(String, nullable=False)
    sport_type = Column(String, nullable=True)

    opening_time = Column(Time, nullable=False)
    closing_time = Column(Time, nullable=False)
    price_per_hour = Column(Numeric(10, 2), nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    facility = relationship("Facility", back_populates="courts")

    __table_args__ = (
        CheckConstraint("opening_time < closing_time", name="ck_courts_operating_hours"),
    )


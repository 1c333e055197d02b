from typing import List, Optional

from pydantic import BaseModel


class SlotOut(BaseModel):
    start_time: str
    end_time: str
    available: bool
    status: str
    reason: Optional[str] = None


class OperatingHours(BaseModel):
    opening: str
    closing: str


class AvailabilitySummary(BaseModel):
    total: int
    available: int
    booked: int
    blocked: int
    past: int


class AvailabilityOut(BaseModel):
    court_id: int
    date: str
    operating_hours: OperatingHours
    price_per_hour: str
    slots: List[SlotOut]
    summary: AvailabilitySummary

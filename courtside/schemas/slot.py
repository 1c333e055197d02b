from datetime import date, time
from typing import Optional

from pydantic import BaseModel, Field


class BlockSlotRequest(BaseModel):
    date: date
    start_time: time
    end_time: time
    reason: Optional[str] = Field(None, max_length=200)


class BlockedSlotOut(BaseModel):
    id: int
    court_id: int
    date: date
    start_time: time
    end_time: time
    block_reason: Optional[str] = None

    model_config = {"from_attributes": True}

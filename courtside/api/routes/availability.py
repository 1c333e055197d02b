from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from courtside.core.auth_utils import Principal
from courtside.core.dependencies import (
    get_cache, get_db, get_settings, require_staff, unwrap,
)
from courtside.schemas.availability import AvailabilityOut
from courtside.schemas.slot import BlockedSlotOut, BlockSlotRequest
from courtside.services.availability import get_court_availability
from courtside.services.reservation import ReservationGuard
from courtside.services.slots import SlotBlocker

router = APIRouter(prefix="/courts", tags=["Courts"])


# ---------------------------------------------------------------------
# AVAILABILITY (public)
# ---------------------------------------------------------------------
@router.get("/{court_id}/availability", response_model=AvailabilityOut)
def court_availability(
    court_id: int,
    day: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    cache=Depends(get_cache),
):
    return unwrap(get_court_availability(
        db,
        court_id,
        day,
        settings.slot_duration_minutes,
        now=settings.local_now(),
        cache=cache,
    ))


# ---------------------------------------------------------------------
# BLOCKED SLOTS (owner/admin)
# ---------------------------------------------------------------------
@router.post("/{court_id}/block-slots", response_model=BlockedSlotOut, status_code=201)
def block_slots(
    court_id: int,
    data: BlockSlotRequest,
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    cache=Depends(get_cache),
    principal: Principal = Depends(require_staff),
):
    blocker = SlotBlocker(db, ReservationGuard(settings.claim_granularity_minutes), cache)
    return unwrap(blocker.block(
        court_id, data.date, data.start_time, data.end_time, principal, data.reason
    ))


@router.delete("/{court_id}/block-slots/{slot_id}")
def unblock_slot(
    court_id: int,
    slot_id: int,
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    cache=Depends(get_cache),
    principal: Principal = Depends(require_staff),
):
    blocker = SlotBlocker(db, ReservationGuard(settings.claim_granularity_minutes), cache)
    slot = unwrap(blocker.unblock(court_id, slot_id, principal))
    return {"message": "Slot unblocked", "slot_id": slot.id}

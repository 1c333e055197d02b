"""Time-driven maintenance of the booking table.

Two passes: abandoned checkouts are cancelled once their payment window
has lapsed (releasing their slot claims), and confirmed bookings whose end
time is behind us are marked completed. Every booking is handled under its
own row lock and transaction, so several instances may sweep at once.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from courtside.core.logging_config import get_logger
from courtside.services.bookings import BookingService
from courtside.utils.timeutils import utc_now

logger = get_logger()


@dataclass
class SweepReport:
    expired: List[int] = field(default_factory=list)
    completed: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"expired": self.expired, "completed": self.completed}


def run_sweep(db, settings, gateway=None, cache=None, notifier=None, now: Optional[datetime] = None, now_utc: Optional[datetime] = None) -> SweepReport:
    """``now`` is venue-local wall time, ``now_utc`` the naive UTC clock."""
    service = BookingService(db, settings, gateway, cache=cache, notifier=notifier)

    report = SweepReport()
    report.expired = service.expire_stale(now_utc or utc_now())
    report.completed = service.complete_elapsed(now or settings.local_now())

    if report.expired or report.completed:
        logger.bind(log_type="booking").info(
            f"Sweep | expired={len(report.expired)} | completed={len(report.completed)}"
        )
    return report


def sweep_once(database, settings, gateway=None, cache=None, notifier=None) -> SweepReport:
    """One sweep on a fresh session; used by the background loop."""
    db = database.session()
    try:
        return run_sweep(db, settings, gateway, cache=cache, notifier=notifier)
    finally:
        db.close()

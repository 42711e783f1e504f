import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ...models import Booking
from ...tenancy import TenantScope
from .availability import SlotWindow
from .repository import SchedulingRepository

logger = logging.getLogger(__name__)


def day_window(day: date) -> SlotWindow:
    start = datetime.combine(day, time.min)
    return SlotWindow(start, start + timedelta(days=1))


def booking_window(booking: Booking, default_duration: int) -> SlotWindow:
    duration = booking.duration_minutes or default_duration
    return SlotWindow(booking.scheduled_at, booking.scheduled_at + timedelta(minutes=duration))


class ConflictDetector:
    """Checks candidate windows against bookings that already hold a slot."""

    def __init__(self, db: Session, scope: TenantScope):
        self.db = db
        self.scope = scope
        self.repo = SchedulingRepository()

    def existing_windows(
        self,
        service_id: int,
        window: SlotWindow,
        default_duration: int,
        store_id: Optional[int] = None,
    ) -> List[SlotWindow]:
        bookings = self.repo.get_active_bookings(
            self.db, self.scope, service_id, window.start, window.end, store_id
        )
        return [booking_window(b, default_duration) for b in bookings]

    def has_conflict(
        self,
        service_id: int,
        window: SlotWindow,
        candidate: SlotWindow,
        default_duration: int,
        store_id: Optional[int] = None,
    ) -> bool:
        existing = self.existing_windows(service_id, window, default_duration, store_id)
        conflict = overlaps_any(candidate, existing)
        if conflict:
            logger.info(
                f"⚠️ Slot {candidate.start:%Y-%m-%d %H:%M} already booked for service {service_id}"
            )
        return conflict


def overlaps_any(candidate: SlotWindow, existing: Iterable[SlotWindow]) -> bool:
    return any(candidate.overlaps(other) for other in existing)

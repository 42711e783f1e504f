"""
Availability resolution for bookable services.

A service publishes its weekly schedule one of two ways:

* inline JSON on the service row::

      {"monday": {"available": true, "time_slots": ["09:00", "10:00"]}}

  where each entry in ``time_slots`` is a slot start time, or
* relational ``booking_availability`` rows giving ``[start_time, end_time)``
  windows per weekday that are cut into slots of the service duration.

The inline schedule wins whenever it has an entry for the requested weekday.
All times are local wall-clock times in ``BOOKING_TIMEZONE``.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Union

from dateutil import parser as date_parser
from dateutil import tz
from sqlalchemy.orm import Session

from ...config import BOOKING_TIMEZONE, DEFAULT_SLOT_DURATION_MINUTES
from ...models import AvailabilitySlot, StoreService
from ...tenancy import TenantScope
from .repository import SchedulingRepository

logger = logging.getLogger(__name__)

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# Failure reasons
INVALID_FORMAT = "invalid_format"
IN_PAST = "in_past"
PREVIOUS_YEAR = "previous_year"
NO_AVAILABILITY = "no_availability"
OUTSIDE_WINDOW = "outside_window"
NOT_SLOT_START = "not_slot_start"

FAILURE_MESSAGES = {
    INVALID_FORMAT: "Invalid scheduled_at format",
    IN_PAST: "Cannot book a time slot in the past",
    PREVIOUS_YEAR: "Cannot book a time slot in a previous year",
    NO_AVAILABILITY: "No availability configured for this day",
    OUTSIDE_WINDOW: "Requested time is outside available hours",
    NOT_SLOT_START: "Requested time is not a valid slot start",
}


def local_now() -> datetime:
    """Current wall-clock time in the booking timezone, without tzinfo."""
    return datetime.now(tz.gettz(BOOKING_TIMEZONE)).replace(tzinfo=None)


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday, matching ``booking_availability.day_of_week``."""
    return (day.weekday() + 1) % 7


def parse_scheduled_at(value) -> Optional[datetime]:
    """
    Parse a requested booking time into a naive local datetime, truncated to the minute.

    A trailing ``Z`` is dropped and the clock fields are kept as-is: callers send
    the wall-clock time they picked, not a real UTC instant. Any other explicit
    offset is converted into the booking timezone.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text[-1] in ("Z", "z"):
            text = text[:-1]
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(tz.gettz(BOOKING_TIMEZONE)).replace(tzinfo=None)

    return parsed.replace(second=0, microsecond=0)


def parse_clock_time(value) -> Optional[time]:
    if isinstance(value, time):
        return value
    try:
        hours, minutes = str(value).strip().split(":")[:2]
        return time(int(hours), int(minutes))
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class SlotWindow:
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end

    def overlaps(self, other: "SlotWindow") -> bool:
        # Windows that only touch at a boundary do not overlap
        return self.start < other.end and self.end > other.start

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass
class ResolveResult:
    ok: bool
    scheduled_at: Optional[datetime] = None
    slot: Optional[SlotWindow] = None
    reason: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        return FAILURE_MESSAGES.get(self.reason) if self.reason else None


@dataclass
class InlineAvailability:
    """One weekday entry from a service's JSON schedule."""

    available: bool
    time_slots: List[str] = field(default_factory=list)


@dataclass
class RelationalAvailability:
    rows: List[AvailabilitySlot]


AvailabilitySource = Union[InlineAvailability, RelationalAvailability]


def _inline_schedule(service: StoreService) -> dict:
    raw = service.availability
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning(f"⚠️ Service {service.id} has unreadable availability JSON")
            return {}
    if not isinstance(raw, dict):
        return {}
    return {str(key).strip().lower(): entry for key, entry in raw.items()}


class AvailabilityResolver:
    """Decides whether a requested instant is bookable for a service."""

    def __init__(self, db: Session, scope: TenantScope, clock: Callable[[], datetime] = local_now):
        self.db = db
        self.scope = scope
        self.clock = clock
        self.repo = SchedulingRepository()

    # ==========================================
    # Source selection
    # ==========================================

    def load_source(
        self, service: StoreService, day: date, store_id: Optional[int] = None
    ) -> Optional[AvailabilitySource]:
        entry = _inline_schedule(service).get(DAY_NAMES[day.weekday()])
        if isinstance(entry, dict):
            return InlineAvailability(
                available=bool(entry.get("available", False)),
                time_slots=[str(slot) for slot in entry.get("time_slots") or []],
            )

        rows = self.repo.get_availability_rows(
            self.db, self.scope, service.id, day_of_week(day), store_id
        )
        if not rows:
            return None
        return RelationalAvailability(rows=rows)

    def service_duration(self, service: StoreService) -> int:
        return service.duration_minutes or DEFAULT_SLOT_DURATION_MINUTES

    # ==========================================
    # Resolution
    # ==========================================

    def resolve(self, service: StoreService, requested, store_id: Optional[int] = None) -> ResolveResult:
        scheduled_at = parse_scheduled_at(requested)
        if scheduled_at is None:
            return ResolveResult(ok=False, reason=INVALID_FORMAT)

        now = self.clock().replace(second=0, microsecond=0)
        if scheduled_at.year < now.year:
            return ResolveResult(ok=False, scheduled_at=scheduled_at, reason=PREVIOUS_YEAR)
        if scheduled_at < now:
            return ResolveResult(ok=False, scheduled_at=scheduled_at, reason=IN_PAST)

        source = self.load_source(service, scheduled_at.date(), store_id)
        if source is None:
            return ResolveResult(ok=False, scheduled_at=scheduled_at, reason=NO_AVAILABILITY)

        if isinstance(source, InlineAvailability):
            return self._resolve_inline(source, scheduled_at)
        return self._resolve_relational(source, scheduled_at, self.service_duration(service))

    def _resolve_inline(self, source: InlineAvailability, scheduled_at: datetime) -> ResolveResult:
        if not source.available or not source.time_slots:
            return ResolveResult(ok=False, scheduled_at=scheduled_at, reason=NO_AVAILABILITY)

        requested_hhmm = scheduled_at.strftime("%H:%M")
        if requested_hhmm not in [slot.strip() for slot in source.time_slots]:
            return ResolveResult(ok=False, scheduled_at=scheduled_at, reason=OUTSIDE_WINDOW)

        starts = sorted(t for t in (parse_clock_time(slot) for slot in source.time_slots) if t)
        day = scheduled_at.date()
        window = SlotWindow(datetime.combine(day, starts[0]), datetime.combine(day, starts[-1]))
        return ResolveResult(ok=True, scheduled_at=scheduled_at, slot=window)

    def _resolve_relational(
        self, source: RelationalAvailability, scheduled_at: datetime, duration: int
    ) -> ResolveResult:
        requested = scheduled_at.time()
        row = next(
            (r for r in source.rows if r.start_time <= requested < r.end_time),
            None,
        )
        if row is None:
            return ResolveResult(ok=False, scheduled_at=scheduled_at, reason=OUTSIDE_WINDOW)

        day = scheduled_at.date()
        window_end = datetime.combine(day, row.end_time)
        step = timedelta(minutes=duration)
        cursor = datetime.combine(day, row.start_time)
        while cursor < window_end:
            if cursor == scheduled_at:
                if cursor + step > window_end:
                    break
                return ResolveResult(
                    ok=True, scheduled_at=scheduled_at, slot=SlotWindow(cursor, cursor + step)
                )
            cursor += step

        return ResolveResult(ok=False, scheduled_at=scheduled_at, reason=NOT_SLOT_START)

    # ==========================================
    # Slot listing
    # ==========================================

    def candidate_slots(
        self, service: StoreService, day: date, store_id: Optional[int] = None
    ) -> List[SlotWindow]:
        """Every slot the schedule offers on ``day``, before conflicts are removed."""
        source = self.load_source(service, day, store_id)
        duration = self.service_duration(service)
        step = timedelta(minutes=duration)

        if source is None:
            return []

        if isinstance(source, InlineAvailability):
            if not source.available:
                return []
            starts = sorted(
                {t for t in (parse_clock_time(slot) for slot in source.time_slots) if t}
            )
            return [
                SlotWindow(datetime.combine(day, s), datetime.combine(day, s) + step)
                for s in starts
            ]

        slots = []
        for row in sorted(source.rows, key=lambda r: r.start_time):
            cursor = datetime.combine(day, row.start_time)
            window_end = datetime.combine(day, row.end_time)
            while cursor + step <= window_end:
                slots.append(SlotWindow(cursor, cursor + step))
                cursor += step
        return slots


def get_clock() -> Callable[[], datetime]:
    """Dependency returning the clock used for past-time checks"""
    return local_now

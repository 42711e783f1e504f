"""Scheduling service - Slot validation and listing for paid bookings"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import StoreService, Tenant
from ...tenancy import TenantScope
from .availability import AvailabilityResolver, SlotWindow, local_now
from .conflicts import ConflictDetector, day_window, overlaps_any
from .repository import SchedulingRepository

logger = logging.getLogger(__name__)


@dataclass
class ValidatedSlot:
    service: StoreService
    store_id: Optional[int]
    scheduled_at: datetime
    window: SlotWindow


class SchedulingService:
    def __init__(self, db: Session, tenant: Tenant, clock: Callable[[], datetime] = local_now):
        self.db = db
        self.tenant = tenant
        self.scope = TenantScope.for_tenant(tenant)
        self.clock = clock
        self.repo = SchedulingRepository()
        self.resolver = AvailabilityResolver(db, self.scope, clock)
        self.conflicts = ConflictDetector(db, self.scope)

    def get_service_or_404(self, service_id) -> StoreService:
        service = self.repo.get_service(self.db, self.scope, service_id)
        if not service:
            raise HTTPException(status_code=404, detail="Service not found")
        return service

    def validate_slot(self, service_id, scheduled_at, store_id: Optional[int] = None) -> ValidatedSlot:
        """
        Check that a slot can be paid for.

        Raises 404 for an unknown service, 400 when the schedule does not offer
        the slot, and 409 when a pending or confirmed booking already holds it.
        The check is advisory: nothing is reserved until the booking is created.
        """
        service = self.get_service_or_404(service_id)
        store_id = store_id or service.store_id

        result = self.resolver.resolve(service, scheduled_at, store_id)
        if not result.ok:
            logger.info(f"⚠️ Slot rejected for service {service.id}: {result.reason}")
            raise HTTPException(status_code=400, detail=result.message)

        duration = self.resolver.service_duration(service)
        candidate = SlotWindow(
            result.scheduled_at, result.scheduled_at + timedelta(minutes=duration)
        )
        if self.conflicts.has_conflict(
            service.id, day_window(candidate.start.date()), candidate, duration, store_id
        ):
            raise HTTPException(status_code=409, detail="Time slot already booked")

        return ValidatedSlot(
            service=service, store_id=store_id, scheduled_at=result.scheduled_at, window=candidate
        )

    def list_available_slots(self, service_id, day: date, store_id: Optional[int] = None) -> dict:
        service = self.get_service_or_404(service_id)
        store_id = store_id or service.store_id
        duration = self.resolver.service_duration(service)

        existing = self.conflicts.existing_windows(service.id, day_window(day), duration, store_id)
        now = self.clock()
        open_slots = [
            slot
            for slot in self.resolver.candidate_slots(service, day, store_id)
            if slot.start >= now and not overlaps_any(slot, existing)
        ]

        return {
            "service": {
                "id": service.id,
                "service_title": service.service_title,
                "duration_minutes": service.duration_minutes,
                "price": float(service.price) if service.price is not None else None,
            },
            "date": day.isoformat(),
            "available_slots": [
                {
                    "start_time": slot.start,
                    "end_time": slot.end,
                    "duration_minutes": slot.duration_minutes,
                }
                for slot in open_slots
            ],
        }

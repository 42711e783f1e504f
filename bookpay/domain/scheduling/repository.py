"""Scheduling repository - Database operations for services, availability and bookings"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ...models import AvailabilitySlot, Booking, StoreService
from ...tenancy import TenantScope


class SchedulingRepository:
    """Repository for scheduling database operations"""

    @staticmethod
    def get_service(db: Session, scope: TenantScope, service_id: int) -> Optional[StoreService]:
        """Get an active service by ID"""
        query = db.query(StoreService).filter(
            StoreService.id == service_id, StoreService.is_active.is_(True)
        )
        return scope.apply(query, StoreService).first()

    @staticmethod
    def get_availability_rows(
        db: Session,
        scope: TenantScope,
        service_id: int,
        day_of_week: int,
        store_id: Optional[int] = None,
    ) -> List[AvailabilitySlot]:
        """Get available weekly windows for a service on one weekday"""
        query = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.service_id == service_id,
            AvailabilitySlot.day_of_week == day_of_week,
            AvailabilitySlot.is_available.is_(True),
        )
        if store_id:
            query = query.filter(AvailabilitySlot.store_id == store_id)
        query = scope.apply(query, AvailabilitySlot)
        return query.order_by(AvailabilitySlot.start_time).all()

    @staticmethod
    def get_active_bookings(
        db: Session,
        scope: TenantScope,
        service_id: int,
        day_start: datetime,
        day_end: datetime,
        store_id: Optional[int] = None,
    ) -> List[Booking]:
        """Get pending/confirmed bookings for a service within a day"""
        query = db.query(Booking).filter(
            Booking.service_id == service_id,
            Booking.scheduled_at >= day_start,
            Booking.scheduled_at < day_end,
            Booking.status.in_(Booking.ACTIVE_STATUSES),
        )
        if store_id:
            query = query.filter(Booking.store_id == store_id)
        return scope.apply(query, Booking).all()

from datetime import date, datetime

import pytest
from fastapi import HTTPException

from bookpay.domain.scheduling.availability import SlotWindow
from bookpay.domain.scheduling.conflicts import ConflictDetector, booking_window, day_window
from bookpay.domain.scheduling.service import SchedulingService
from bookpay.models import Booking
from bookpay.tenancy import TenantScope

from .conftest import MONDAY, fixed_clock

DAY = date(2026, 2, 2)


def window(start_hhmm, end_hhmm):
    def at(hhmm):
        hour, minute = map(int, hhmm.split(":"))
        return datetime(2026, 2, 2, hour, minute)

    return SlotWindow(at(start_hhmm), at(end_hhmm))


@pytest.fixture
def detector(db, tenant):
    return ConflictDetector(db, TenantScope.for_tenant(tenant))


def test_day_window_covers_whole_day():
    assert day_window(DAY) == SlotWindow(datetime(2026, 2, 2), datetime(2026, 2, 3))


def test_booking_window_falls_back_to_default_duration(service, make_booking):
    booking = make_booking(service, datetime(2026, 2, 2, 9, 0))

    assert booking_window(booking, 30) == window("09:00", "09:30")


def test_same_start_conflicts(detector, service, make_booking):
    make_booking(service, datetime(2026, 2, 2, 9, 0), duration_minutes=30)

    assert detector.has_conflict(service.id, day_window(DAY), window("09:00", "09:30"), 30)


def test_partial_overlap_conflicts(detector, service, make_booking):
    make_booking(service, datetime(2026, 2, 2, 9, 0), duration_minutes=60)

    assert detector.has_conflict(service.id, day_window(DAY), window("09:30", "10:00"), 30)


def test_touching_windows_do_not_conflict(detector, service, make_booking):
    make_booking(service, datetime(2026, 2, 2, 9, 0), duration_minutes=30)

    assert not detector.has_conflict(service.id, day_window(DAY), window("09:30", "10:00"), 30)


@pytest.mark.parametrize("status", [Booking.STATUS_CANCELLED, Booking.STATUS_COMPLETED, Booking.STATUS_NO_SHOW])
def test_inactive_bookings_do_not_hold_slot(detector, service, make_booking, status):
    make_booking(service, datetime(2026, 2, 2, 9, 0), duration_minutes=30, status=status)

    assert not detector.has_conflict(service.id, day_window(DAY), window("09:00", "09:30"), 30)


def test_pending_booking_holds_slot(detector, service, make_booking):
    make_booking(service, datetime(2026, 2, 2, 9, 0), status=Booking.STATUS_PENDING)

    assert detector.has_conflict(service.id, day_window(DAY), window("09:00", "09:30"), 30)


def test_other_service_does_not_conflict(detector, service, relational_service, make_booking):
    make_booking(relational_service, datetime(2026, 2, 2, 9, 0), duration_minutes=45)

    assert not detector.has_conflict(service.id, day_window(DAY), window("09:00", "09:30"), 30)


def test_bookings_of_other_tenants_are_ignored(db, service, make_booking):
    make_booking(service, datetime(2026, 2, 2, 9, 0), duration_minutes=30)
    other = ConflictDetector(db, TenantScope(tenant_id=99, is_shared=True))

    assert not other.has_conflict(service.id, day_window(DAY), window("09:00", "09:30"), 30)


def test_validate_slot_returns_window(db, tenant, service):
    slot = SchedulingService(db, tenant, clock=fixed_clock).validate_slot(service.id, MONDAY)

    assert slot.service.id == service.id
    assert slot.store_id == service.store_id
    assert slot.window == window("09:00", "09:30")


def test_validate_slot_unknown_service_is_404(db, tenant, service):
    with pytest.raises(HTTPException) as exc:
        SchedulingService(db, tenant, clock=fixed_clock).validate_slot(404, MONDAY)

    assert exc.value.status_code == 404


def test_validate_slot_inactive_service_is_404(db, tenant, service):
    service.is_active = False
    db.commit()

    with pytest.raises(HTTPException) as exc:
        SchedulingService(db, tenant, clock=fixed_clock).validate_slot(service.id, MONDAY)

    assert exc.value.status_code == 404


def test_validate_slot_outside_schedule_is_400(db, tenant, service):
    with pytest.raises(HTTPException) as exc:
        SchedulingService(db, tenant, clock=fixed_clock).validate_slot(service.id, "2026-02-02T11:00:00")

    assert exc.value.status_code == 400
    assert exc.value.detail == "Requested time is outside available hours"


def test_validate_slot_already_booked_is_409(db, tenant, service, make_booking):
    make_booking(service, datetime(2026, 2, 2, 9, 0))

    with pytest.raises(HTTPException) as exc:
        SchedulingService(db, tenant, clock=fixed_clock).validate_slot(service.id, MONDAY)

    assert exc.value.status_code == 409
    assert exc.value.detail == "Time slot already booked"


def test_list_available_slots_skips_booked(db, tenant, relational_service, make_booking):
    make_booking(relational_service, datetime(2026, 2, 2, 9, 45), duration_minutes=45)

    result = SchedulingService(db, tenant, clock=fixed_clock).list_available_slots(relational_service.id, DAY)

    starts = [slot["start_time"].strftime("%H:%M") for slot in result["available_slots"]]
    assert starts == ["09:00", "10:30", "11:15"]
    assert result["date"] == "2026-02-02"
    assert result["service"]["duration_minutes"] == 45


def test_list_available_slots_skips_past(db, tenant, service):
    service.availability = {"thursday": {"available": True, "time_slots": ["09:00", "10:00", "11:00"]}}
    db.commit()

    result = SchedulingService(db, tenant, clock=fixed_clock).list_available_slots(service.id, date(2026, 1, 15))

    starts = [slot["start_time"].strftime("%H:%M") for slot in result["available_slots"]]
    assert starts == ["10:00", "11:00"]

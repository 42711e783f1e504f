"""Public booking router - Slot availability for customers"""

import logging
from datetime import date
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...tenancy import TenantSessions, get_tenant_or_404, get_tenant_sessions
from .availability import get_clock
from .schemas import AvailableSlotsResponse
from .service import SchedulingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/public-bookings", tags=["Public Bookings"])


@router.get("/availability", response_model=AvailableSlotsResponse)
async def get_available_time_slots(
    tenant_id: int = Query(...),
    service_id: int = Query(...),
    day: date = Query(..., alias="date", description="Day to list, YYYY-MM-DD"),
    store_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    sessions: TenantSessions = Depends(get_tenant_sessions),
    clock: Callable = Depends(get_clock),
):
    """Get open booking slots for a service on a given day"""
    tenant = get_tenant_or_404(db, tenant_id)
    with sessions.open(tenant, db) as tenant_db:
        service = SchedulingService(tenant_db, tenant, clock=clock)
        return service.list_available_slots(service_id, day, store_id)

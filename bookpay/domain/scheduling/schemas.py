"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class SlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    duration_minutes: int


class ServiceSummary(BaseModel):
    id: int
    service_title: str
    duration_minutes: Optional[int] = None
    price: Optional[float] = None


class AvailableSlotsResponse(BaseModel):
    """Open slots for one service on one day"""

    service: ServiceSummary
    date: str
    available_slots: List[SlotResponse]

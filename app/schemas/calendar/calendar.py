# app/schemas/calendar/calendar.py
from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import datetime

from ...application.services.availability_service import ViewerRole
from ...application.services.calendar_service import EventType


class CalendarEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: EventType
    start: datetime
    end: datetime
    title: str
    color: str
    role: ViewerRole
    status: str
    business_id: Optional[str] = None
    clinic_name: Optional[str] = None
    clinician_id: str = ""
    patient_id: Optional[str] = None
    patient_count: int = 0
    reason: str = ""


class SourceFailureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source: str
    error: str


class CalendarResponse(BaseModel):
    events: List[CalendarEventResponse]
    failures: List[SourceFailureResponse] = []
    partial: bool = False
    error: Optional[str] = None

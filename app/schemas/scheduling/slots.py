# app/schemas/scheduling/slots.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime


class SlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: datetime
    end: datetime
    booked_count: int
    remaining_capacity: int = Field(ge=0)
    capacity: int
    available: bool
    is_booked_by_caller: bool
    overbooked: bool = False


class AvailabilityResponse(BaseModel):
    business_id: str
    clinic_id: str
    day: str  # YYYY-MM-DD
    slots: List[SlotResponse]


class SlotRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    business_id: str
    clinic_id: str
    start: datetime
    end: datetime
    status: str
    clinician_id: str
    booked: List[str] = []
    capacity: int


class SlotReleaseRequest(BaseModel):
    patient_id: Optional[str] = None

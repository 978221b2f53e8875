# app/schemas/appointments/appointment.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime

from ...application.ports.appointments_repo import AppointmentStatus


class ReservationRequest(BaseModel):
    start: datetime  # slot start; naive times are read in the clinic's timezone
    reason: str = Field(default="", max_length=500)


class StatusUpdateRequest(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    clinician_id: str
    business_id: str
    clinic_id: Optional[str] = None
    start: datetime
    end: datetime
    status: AppointmentStatus
    reason: str = ""
    created_at: datetime
    updated_at: Optional[datetime] = None

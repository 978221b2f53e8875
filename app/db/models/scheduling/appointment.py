# app/db/models/scheduling/appointment.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid

from ..columns import utc_column, utcnow

class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    patient_id: str = Field(index=True)
    clinician_id: str = Field(index=True)
    business_id: str = Field(foreign_key="businesses.id")
    clinic_id: Optional[str] = Field(default=None, foreign_key="clinics.id", index=True)
    start: datetime = Field(sa_column=utc_column(index=True))
    end: datetime = Field(sa_column=utc_column())
    status: str = Field(default="pending", index=True)
    reason: str = Field(default="")
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())

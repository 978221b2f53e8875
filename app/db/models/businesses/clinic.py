# app/db/models/businesses/clinic.py
from typing import List, Optional
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON
from datetime import datetime
import uuid

from ..columns import utc_column, utcnow

class Clinic(SQLModel, table=True):
    __tablename__ = "clinics"
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    business_id: str = Field(foreign_key="businesses.id", index=True)
    title: str = Field(max_length=200)
    open_hour: Optional[int] = Field(default=None)
    close_hour: Optional[int] = Field(default=None)
    slot_minutes: int = Field(default=60)
    capacity: int = Field(default=20)
    timezone: str = Field(default="UTC", max_length=64)

    # Relationships
    business: Optional["Business"] = Relationship(back_populates="clinics")

class ClinicSlot(SQLModel, table=True):
    __tablename__ = "clinic_slots"
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    business_id: str = Field(foreign_key="businesses.id")
    clinic_id: str = Field(foreign_key="clinics.id", index=True)
    start: datetime = Field(sa_column=utc_column(index=True))
    end: datetime = Field(sa_column=utc_column())
    status: str = Field(default="open")
    clinician_id: str = Field(default="", index=True)
    booked: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    capacity: int = Field(default=20)
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())

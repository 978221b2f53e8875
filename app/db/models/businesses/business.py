# app/db/models/businesses/business.py
from typing import List, Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime
import uuid

from ..columns import utc_column, utcnow

class Business(SQLModel, table=True):
    __tablename__ = "businesses"
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    owner_id: str = Field(index=True)
    status: str = Field(default="active")
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())

    # Relationships
    members: List["BusinessMember"] = Relationship(back_populates="business")
    clinics: List["Clinic"] = Relationship(back_populates="business")

class BusinessMember(SQLModel, table=True):
    __tablename__ = "business_members"
    business_id: str = Field(foreign_key="businesses.id", primary_key=True)
    user_id: str = Field(primary_key=True, index=True)

    business: Optional["Business"] = Relationship(back_populates="members")

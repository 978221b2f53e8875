from dataclasses import dataclass, field
from typing import List, Optional, Protocol
from datetime import datetime


@dataclass
class BusinessDto:
    id: str
    owner_id: str
    member_ids: List[str] = field(default_factory=list)
    status: str = "active"


@dataclass
class ClinicDto:
    id: str
    business_id: str
    title: str
    open_hour: Optional[int]
    close_hour: Optional[int]
    slot_minutes: int = 60
    capacity: int = 20
    timezone: str = "UTC"


@dataclass
class SlotRecordDto:
    id: str
    business_id: str
    clinic_id: str
    start: datetime
    end: datetime
    status: str = "open"
    clinician_id: str = ""
    booked: List[str] = field(default_factory=list)
    capacity: int = 20


class BusinessRepository(Protocol):
    async def get_business(self, business_id: str) -> Optional[BusinessDto]:
        ...

    async def list_owned(self, user_id: str) -> List[BusinessDto]:
        ...

    async def list_member_of(self, user_id: str) -> List[BusinessDto]:
        ...

    async def list_clinics(self, business_id: str) -> List[ClinicDto]:
        ...

    async def get_clinic(self, business_id: str, clinic_id: str) -> Optional[ClinicDto]:
        ...

    async def list_slot_records(self, business_id: str, clinic_id: str, start: datetime, end: datetime) -> List[SlotRecordDto]:
        """Slot records of a clinic whose start falls in [start, end)."""
        ...

    async def get_slot_record(self, business_id: str, clinic_id: str, slot_id: str) -> Optional[SlotRecordDto]:
        ...

    async def join_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: str) -> SlotRecordDto:
        """Atomically add ``user_id`` to the record's booked list.

        Raises SlotUnavailable when the record is full or already lists the
        user, NotFound when it does not exist.
        """
        ...

    async def leave_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: str) -> SlotRecordDto:
        ...

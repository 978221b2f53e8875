from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional, Protocol
from datetime import datetime


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    BOOKED = "booked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that take a place in a slot.
OCCUPYING_STATUSES = (
    AppointmentStatus.PENDING,
    AppointmentStatus.BOOKED,
    AppointmentStatus.COMPLETED,
)


@dataclass
class AppointmentDto:
    id: str
    patient_id: str
    clinician_id: str
    business_id: str
    start: datetime
    end: datetime
    status: AppointmentStatus
    reason: str
    created_at: datetime
    clinic_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError("appointment start must be before its end")

    @property
    def occupies_slot(self) -> bool:
        return self.status in OCCUPYING_STATUSES


@dataclass(frozen=True)
class AppointmentChange:
    """A change notification on the appointment store.

    ``field`` is the attribute the subscription matched on
    (``patient_id`` or ``clinician_id``).
    """
    user_id: str
    field: str
    appointment_ids: tuple = ()


class AppointmentRepository(Protocol):
    async def get_by_id(self, appointment_id: str) -> Optional[AppointmentDto]:
        ...

    async def find_overlapping(self, clinic_id: str, start: datetime, end: datetime) -> List[AppointmentDto]:
        """Occupying appointments of ``clinic_id`` whose interval intersects [start, end)."""
        ...

    async def reserve_slot(
        self,
        *,
        business_id: str,
        clinic_id: str,
        clinician_id: str,
        patient_id: str,
        start: datetime,
        end: datetime,
        capacity: int,
        reason: str = "",
    ) -> AppointmentDto:
        """Atomically count the window's occupancy and create a pending appointment.

        Raises SlotUnavailable when the window is full or the patient
        already holds an occupying appointment in it.
        """
        ...

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> AppointmentDto:
        ...

    async def list_for_patient(self, user_id: str, since: datetime) -> List[AppointmentDto]:
        ...

    async def list_for_clinician(self, user_id: str, since: datetime) -> List[AppointmentDto]:
        ...


class AppointmentSubscription(Protocol):
    def __aiter__(self) -> AsyncIterator[AppointmentChange]:
        ...

    async def __anext__(self) -> AppointmentChange:
        ...

    async def aclose(self) -> None:
        ...


class AppointmentChangeFeed(Protocol):
    def subscribe(self, user_id: str) -> AppointmentSubscription:
        """Changes to appointments where ``user_id`` is patient or clinician.

        The listener is registered before this returns, so every change made
        after the call is delivered. Iteration ends once the subscription is
        closed; call again to start a fresh one.
        """
        ...

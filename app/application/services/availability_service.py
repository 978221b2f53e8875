"""
Availability

Projects a clinic day's candidate slots against the appointments already in
the store: occupancy, remaining capacity and whether the caller holds one of
the places. The projection itself is pure; ``AvailabilityService`` only
fetches its inputs.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Iterable, List, Optional

from .slot_generator import TimeWindow, day_bounds, generate_slots, resolve_tz
from ..ports.appointments_repo import AppointmentDto, AppointmentRepository
from ..ports.businesses_repo import BusinessRepository, ClinicDto
from ...exceptions import NotFound, TransientIOError

logger = logging.getLogger(__name__)


class ViewerRole(str, Enum):
    PATIENT = "patient"
    CLINICIAN = "clinician"
    BOTH = "both"


@dataclass
class Slot:
    start: datetime
    end: datetime
    booked_count: int
    remaining_capacity: int
    available: bool
    is_booked_by_caller: bool
    capacity: int
    business_id: Optional[str] = None
    clinic_id: Optional[str] = None
    overbooked: bool = False

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(start=self.start, end=self.end)


def overlaps(window: TimeWindow, start: datetime, end: datetime) -> bool:
    """True when [start, end) starts inside, ends inside, or spans ``window``."""
    starts_inside = window.start <= start < window.end
    ends_inside = window.start < end <= window.end
    spans = start <= window.start and end >= window.end
    return starts_inside or ends_inside or spans


def held_by(appointment: AppointmentDto, user_id: Optional[str], role: ViewerRole) -> bool:
    if not user_id:
        return False
    if role == ViewerRole.PATIENT:
        return appointment.patient_id == user_id
    if role == ViewerRole.CLINICIAN:
        return appointment.clinician_id == user_id
    return user_id in (appointment.patient_id, appointment.clinician_id)


def compute_availability(
    windows: Iterable[TimeWindow],
    appointments: Iterable[AppointmentDto],
    capacity: int,
    user_id: Optional[str] = None,
    role: ViewerRole = ViewerRole.PATIENT,
    business_id: Optional[str] = None,
    clinic_id: Optional[str] = None,
) -> List[Slot]:
    """
    One Slot per window with its occupancy against ``capacity``.

    Cancelled appointments never count. When occupancy exceeds capacity the
    remaining capacity is clamped to zero and the slot is flagged
    ``overbooked``.
    """
    occupying = [a for a in appointments if a.occupies_slot]
    slots: List[Slot] = []

    for window in windows:
        hits = [a for a in occupying if overlaps(window, a.start, a.end)]
        count = len(hits)
        remaining = capacity - count
        overbooked = remaining < 0
        if overbooked:
            logger.warning(
                f"Slot {window.start.isoformat()} of clinic {clinic_id} holds {count} bookings for capacity {capacity}"
            )
            remaining = 0

        slots.append(Slot(
            start=window.start,
            end=window.end,
            booked_count=count,
            remaining_capacity=remaining,
            available=remaining > 0,
            is_booked_by_caller=any(held_by(a, user_id, role) for a in hits),
            capacity=capacity,
            business_id=business_id,
            clinic_id=clinic_id,
            overbooked=overbooked,
        ))

    return slots


@dataclass
class AvailabilityService:
    business_repo: BusinessRepository
    appointments_repo: AppointmentRepository
    timeout_seconds: Optional[float] = None

    async def _call(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise TransientIOError("Storage call timed out")

    async def _get_clinic(self, business_id: str, clinic_id: str) -> ClinicDto:
        clinic = await self._call(self.business_repo.get_clinic(business_id, clinic_id))
        if not clinic:
            raise NotFound(f"Clinic {clinic_id} not found")
        return clinic

    async def _clinic_day(
        self,
        clinic: ClinicDto,
        day: date,
        user_id: Optional[str],
        role: ViewerRole,
    ) -> List[Slot]:
        windows = generate_slots(clinic.open_hour, clinic.close_hour, clinic.slot_minutes, day, clinic.timezone)
        if not windows:
            return []

        bounds = day_bounds(day, clinic.timezone)
        appointments = await self._call(
            self.appointments_repo.find_overlapping(clinic.id, bounds.start, bounds.end)
        )
        return compute_availability(
            windows,
            appointments,
            clinic.capacity,
            user_id=user_id,
            role=role,
            business_id=clinic.business_id,
            clinic_id=clinic.id,
        )

    async def day_availability(
        self,
        business_id: str,
        clinic_id: str,
        day: date,
        user_id: Optional[str] = None,
        role: ViewerRole = ViewerRole.PATIENT,
    ) -> List[Slot]:
        clinic = await self._get_clinic(business_id, clinic_id)
        return await self._clinic_day(clinic, day, user_id, role)

    async def find_slot(
        self,
        business_id: str,
        clinic_id: str,
        start: datetime,
        user_id: Optional[str] = None,
    ) -> Slot:
        """The slot of the clinic that begins at ``start``."""
        clinic = await self._get_clinic(business_id, clinic_id)
        zone = resolve_tz(clinic.timezone)
        if start.tzinfo is None:
            start = zone.localize(start)
        local_day = start.astimezone(zone).date()

        for slot in await self._clinic_day(clinic, local_day, user_id, ViewerRole.PATIENT):
            if slot.start == start:
                return slot
        raise NotFound("No slot starts at the requested time")

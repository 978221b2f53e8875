import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ....application.ports.appointments_repo import (
    AppointmentChange,
    AppointmentChangeFeed,
    AppointmentDto,
    AppointmentRepository,
    AppointmentStatus,
)
from ....application.ports.businesses_repo import BusinessDto, BusinessRepository, ClinicDto, SlotRecordDto
from ....exceptions import NotFound, SlotUnavailable

_CLOSED = None


class InMemorySchedulingStore(BusinessRepository, AppointmentRepository, AppointmentChangeFeed):
    """Process-local store for businesses, clinics, slot records and appointments.

    Writes that must be conditional (reservations, slot record joins) run
    under one asyncio lock, so a check and its write never interleave with
    another writer on the same loop.
    """

    def __init__(self) -> None:
        self._businesses: Dict[str, BusinessDto] = {}
        self._clinics: Dict[Tuple[str, str], ClinicDto] = {}
        self._slot_records: Dict[Tuple[str, str, str], SlotRecordDto] = {}
        self._appointments: Dict[str, AppointmentDto] = {}
        self._lock = asyncio.Lock()
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    # seeding

    def add_business(self, business: BusinessDto) -> BusinessDto:
        self._businesses[business.id] = business
        return business

    def add_clinic(self, clinic: ClinicDto) -> ClinicDto:
        self._clinics[(clinic.business_id, clinic.id)] = clinic
        return clinic

    def add_slot_record(self, record: SlotRecordDto) -> SlotRecordDto:
        self._slot_records[(record.business_id, record.clinic_id, record.id)] = record
        return record

    def add_appointment(self, appointment: AppointmentDto) -> AppointmentDto:
        self._appointments[appointment.id] = appointment
        self._publish(appointment)
        return appointment

    @property
    def appointments(self) -> List[AppointmentDto]:
        return list(self._appointments.values())

    # BusinessRepository

    async def get_business(self, business_id: str) -> Optional[BusinessDto]:
        return self._businesses.get(business_id)

    async def list_owned(self, user_id: str) -> List[BusinessDto]:
        return [b for b in self._businesses.values() if b.owner_id == user_id]

    async def list_member_of(self, user_id: str) -> List[BusinessDto]:
        return [b for b in self._businesses.values() if user_id in b.member_ids]

    async def list_clinics(self, business_id: str) -> List[ClinicDto]:
        return [c for (b, _), c in self._clinics.items() if b == business_id]

    async def get_clinic(self, business_id: str, clinic_id: str) -> Optional[ClinicDto]:
        return self._clinics.get((business_id, clinic_id))

    async def list_slot_records(self, business_id: str, clinic_id: str, start: datetime, end: datetime) -> List[SlotRecordDto]:
        records = [
            r for (b, c, _), r in self._slot_records.items()
            if b == business_id and c == clinic_id and start <= r.start < end
        ]
        return sorted(records, key=lambda r: r.start)

    async def get_slot_record(self, business_id: str, clinic_id: str, slot_id: str) -> Optional[SlotRecordDto]:
        return self._slot_records.get((business_id, clinic_id, slot_id))

    async def join_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: str) -> SlotRecordDto:
        async with self._lock:
            key = (business_id, clinic_id, slot_id)
            record = self._slot_records.get(key)
            if not record:
                raise NotFound("Slot not found")
            if user_id in record.booked:
                raise SlotUnavailable("You already booked this slot")
            if len(record.booked) >= record.capacity:
                raise SlotUnavailable("Slot is full")
            booked = record.booked + [user_id]
            status = "booked" if len(booked) >= record.capacity else record.status
            updated = replace(record, booked=booked, status=status)
            self._slot_records[key] = updated
            return updated

    async def leave_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: str) -> SlotRecordDto:
        async with self._lock:
            key = (business_id, clinic_id, slot_id)
            record = self._slot_records.get(key)
            if not record:
                raise NotFound("Slot not found")
            booked = [u for u in record.booked if u != user_id]
            status = "open" if record.status == "booked" and len(booked) < record.capacity else record.status
            updated = replace(record, booked=booked, status=status)
            self._slot_records[key] = updated
            return updated

    # AppointmentRepository

    async def get_by_id(self, appointment_id: str) -> Optional[AppointmentDto]:
        return self._appointments.get(appointment_id)

    def _overlapping(self, clinic_id: str, start: datetime, end: datetime) -> List[AppointmentDto]:
        return [
            a for a in self._appointments.values()
            if a.clinic_id == clinic_id and a.occupies_slot and a.start < end and a.end > start
        ]

    async def find_overlapping(self, clinic_id: str, start: datetime, end: datetime) -> List[AppointmentDto]:
        return self._overlapping(clinic_id, start, end)

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
        async with self._lock:
            taken = self._overlapping(clinic_id, start, end)
            if any(a.patient_id == patient_id for a in taken):
                raise SlotUnavailable("You already booked this slot")
            if len(taken) >= capacity:
                raise SlotUnavailable()
            now = datetime.now(timezone.utc)
            appointment = AppointmentDto(
                id=uuid.uuid4().hex,
                patient_id=patient_id,
                clinician_id=clinician_id,
                business_id=business_id,
                clinic_id=clinic_id,
                start=start,
                end=end,
                status=AppointmentStatus.PENDING,
                reason=reason,
                created_at=now,
                updated_at=now,
            )
            self._appointments[appointment.id] = appointment
        self._publish(appointment)
        return appointment

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> AppointmentDto:
        appointment = self._appointments.get(appointment_id)
        if not appointment:
            raise NotFound("Appointment not found")
        updated = replace(appointment, status=status, updated_at=datetime.now(timezone.utc))
        self._appointments[appointment_id] = updated
        self._publish(updated)
        return updated

    async def list_for_patient(self, user_id: str, since: datetime) -> List[AppointmentDto]:
        return [a for a in self._appointments.values() if a.patient_id == user_id and a.start >= since]

    async def list_for_clinician(self, user_id: str, since: datetime) -> List[AppointmentDto]:
        return [a for a in self._appointments.values() if a.clinician_id == user_id and a.start >= since]

    # AppointmentChangeFeed

    def _publish(self, appointment: AppointmentDto) -> None:
        for field_name, user_id in (("patient_id", appointment.patient_id), ("clinician_id", appointment.clinician_id)):
            for queue in self._subscribers.get(user_id, []):
                queue.put_nowait(AppointmentChange(user_id=user_id, field=field_name, appointment_ids=(appointment.id,)))

    def subscribe(self, user_id: str) -> "_QueueSubscription":
        return _QueueSubscription(self, user_id)

    def _unsubscribe(self, user_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(user_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(user_id, None)

    @property
    def subscribed_users(self) -> List[str]:
        return list(self._subscribers)

    def close_subscriptions(self, user_id: Optional[str] = None) -> None:
        """End the open subscriptions of ``user_id`` (or everyone's)."""
        for uid, queues in self._subscribers.items():
            if user_id is None or uid == user_id:
                for queue in queues:
                    queue.put_nowait(_CLOSED)


class _QueueSubscription:
    """One subscriber queue, registered on the store as soon as it is created."""

    def __init__(self, store: InMemorySchedulingStore, user_id: str) -> None:
        self._store = store
        self.user_id = user_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        store._subscribers.setdefault(user_id, []).append(self._queue)

    def __aiter__(self) -> "_QueueSubscription":
        return self

    async def __anext__(self) -> AppointmentChange:
        if self._closed:
            raise StopAsyncIteration
        change = await self._queue.get()
        if change is _CLOSED:
            await self.aclose()
            raise StopAsyncIteration
        return change

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._unsubscribe(self.user_id, self._queue)

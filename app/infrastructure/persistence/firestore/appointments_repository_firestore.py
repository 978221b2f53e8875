import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from google.cloud.firestore import AsyncClient, Client, FieldFilter, async_transactional
from starlette.concurrency import run_in_threadpool

from .businesses_repository_firestore import store_errors
from .documents import APPOINTMENTS, APPOINTMENT_FIELDS, appointment_from_doc, appointment_to_doc
from ....application.ports.appointments_repo import (
    OCCUPYING_STATUSES,
    AppointmentChange,
    AppointmentChangeFeed,
    AppointmentDto,
    AppointmentRepository,
    AppointmentStatus,
)
from ....exceptions import NotFound, SlotUnavailable

logger = logging.getLogger(__name__)


class FirestoreAppointmentsRepository(AppointmentRepository):
    def __init__(self, db: AsyncClient):
        self.db = db

    def _overlap_query(self, clinic_id: str, start: datetime, end: datetime):
        return (
            self.db.collection(APPOINTMENTS)
            .where(filter=FieldFilter("clinicId", "==", clinic_id))
            .where(filter=FieldFilter("status", "in", [s.value for s in OCCUPYING_STATUSES]))
            .where(filter=FieldFilter("start", "<", end))
            .where(filter=FieldFilter("end", ">", start))
        )

    async def get_by_id(self, appointment_id: str) -> Optional[AppointmentDto]:
        with store_errors("appointment lookup"):
            snap = await self.db.collection(APPOINTMENTS).document(appointment_id).get()
        if not snap.exists:
            return None
        return appointment_from_doc(snap.id, snap.to_dict())

    async def find_overlapping(self, clinic_id: str, start: datetime, end: datetime) -> List[AppointmentDto]:
        with store_errors("overlap query"):
            snaps = await self._overlap_query(clinic_id, start, end).get()
        return [appointment_from_doc(s.id, s.to_dict()) for s in snaps]

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
        query = self._overlap_query(clinic_id, start, end)
        new_ref = self.db.collection(APPOINTMENTS).document()

        @async_transactional
        async def reserve(transaction) -> AppointmentDto:
            # reads inside the transaction lock the queried range until commit
            taken = [appointment_from_doc(s.id, s.to_dict()) async for s in query.stream(transaction=transaction)]
            if any(a.patient_id == patient_id for a in taken):
                raise SlotUnavailable("You already booked this slot")
            if len(taken) >= capacity:
                raise SlotUnavailable()
            now = datetime.now(timezone.utc)
            appointment = AppointmentDto(
                id=new_ref.id,
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
            transaction.create(new_ref, appointment_to_doc(appointment))
            return appointment

        with store_errors("reservation"):
            return await reserve(self.db.transaction())

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> AppointmentDto:
        ref = self.db.collection(APPOINTMENTS).document(appointment_id)
        with store_errors("status update"):
            snap = await ref.get()
            if not snap.exists:
                raise NotFound("Appointment not found")
            await ref.update({"status": status.value, "updatedAt": datetime.now(timezone.utc)})
            snap = await ref.get()
        return appointment_from_doc(snap.id, snap.to_dict())

    async def _list_where(self, field_name: str, user_id: str, since: datetime) -> List[AppointmentDto]:
        query = (
            self.db.collection(APPOINTMENTS)
            .where(filter=FieldFilter(APPOINTMENT_FIELDS[field_name], "==", user_id))
            .where(filter=FieldFilter("start", ">=", since))
        )
        with store_errors("appointments query"):
            snaps = await query.get()
        return [appointment_from_doc(s.id, s.to_dict()) for s in snaps]

    async def list_for_patient(self, user_id: str, since: datetime) -> List[AppointmentDto]:
        return await self._list_where("patient_id", user_id, since)

    async def list_for_clinician(self, user_id: str, since: datetime) -> List[AppointmentDto]:
        return await self._list_where("clinician_id", user_id, since)


class FirestoreAppointmentChangeFeed(AppointmentChangeFeed):
    """Snapshot listeners on the appointments of one user."""

    def __init__(self, db: Client):
        self.db = db

    def subscribe(self, user_id: str) -> "SnapshotSubscription":
        return SnapshotSubscription(self.db, user_id)


class SnapshotSubscription:
    """
    Listener callbacks run on the Firestore watch thread; they hand changes
    to the subscriber's event loop. Listeners are attached on creation and
    every snapshot is reported, the initial one included, so nothing written
    after ``subscribe`` returns can go unnoticed.
    """

    def __init__(self, db: Client, user_id: str):
        self.user_id = user_id
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._watches = []
        for field_name in ("patient_id", "clinician_id"):
            query = db.collection(APPOINTMENTS).where(
                filter=FieldFilter(APPOINTMENT_FIELDS[field_name], "==", user_id)
            )
            self._watches.append(query.on_snapshot(self._listener(field_name)))

    def _listener(self, field_name: str):
        def on_snapshot(snapshots, changes, read_time):
            change = AppointmentChange(
                user_id=self.user_id,
                field=field_name,
                appointment_ids=tuple(c.document.id for c in changes or []),
            )
            self._loop.call_soon_threadsafe(self._queue.put_nowait, change)
        return on_snapshot

    def __aiter__(self) -> "SnapshotSubscription":
        return self

    async def __anext__(self) -> AppointmentChange:
        if self._closed:
            raise StopAsyncIteration
        change = await self._queue.get()
        if change is None:
            raise StopAsyncIteration
        return change

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        for watch in self._watches:
            # unsubscribe joins the watch thread
            await run_in_threadpool(watch.unsubscribe)
        logger.debug(f"Closed appointment listeners for user {self.user_id}")

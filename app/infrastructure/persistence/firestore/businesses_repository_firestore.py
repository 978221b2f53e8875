from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

from google.api_core.exceptions import GoogleAPICallError
from google.cloud.firestore import AsyncClient, ArrayRemove, ArrayUnion, SERVER_TIMESTAMP, FieldFilter, async_transactional

from .documents import BUSINESSES, CLINICS, SLOTS, business_from_doc, clinic_from_doc, slot_record_from_doc
from ....application.ports.businesses_repo import BusinessDto, BusinessRepository, ClinicDto, SlotRecordDto
from ....exceptions import NotFound, SlotUnavailable, TransientIOError


@contextmanager
def store_errors(action: str):
    """Surface Firestore API failures as TransientIOError."""
    try:
        yield
    except GoogleAPICallError as e:
        raise TransientIOError(f"Firestore {action} failed: {e.message}")


class FirestoreBusinessRepository(BusinessRepository):
    def __init__(self, db: AsyncClient, default_capacity: int = 20, default_slot_minutes: int = 60):
        self.db = db
        self.default_capacity = default_capacity
        self.default_slot_minutes = default_slot_minutes

    def _slot_ref(self, business_id: str, clinic_id: str, slot_id: str):
        return self.db.document(BUSINESSES, business_id, CLINICS, clinic_id, SLOTS, slot_id)

    def _slot_record(self, business_id: str, clinic_id: str, snap) -> SlotRecordDto:
        return slot_record_from_doc(business_id, clinic_id, snap.id, snap.to_dict(), self.default_capacity)

    async def get_business(self, business_id: str) -> Optional[BusinessDto]:
        with store_errors("business lookup"):
            snap = await self.db.collection(BUSINESSES).document(business_id).get()
        if not snap.exists:
            return None
        return business_from_doc(snap.id, snap.to_dict())

    async def list_owned(self, user_id: str) -> List[BusinessDto]:
        query = self.db.collection(BUSINESSES).where(filter=FieldFilter("owner_id", "==", user_id))
        with store_errors("owned businesses query"):
            snaps = await query.get()
        return [business_from_doc(s.id, s.to_dict()) for s in snaps]

    async def list_member_of(self, user_id: str) -> List[BusinessDto]:
        query = self.db.collection(BUSINESSES).where(filter=FieldFilter("members", "array_contains", user_id))
        with store_errors("member businesses query"):
            snaps = await query.get()
        return [business_from_doc(s.id, s.to_dict()) for s in snaps]

    async def list_clinics(self, business_id: str) -> List[ClinicDto]:
        with store_errors("clinics query"):
            snaps = await self.db.collection(BUSINESSES, business_id, CLINICS).get()
        return [
            clinic_from_doc(business_id, s.id, s.to_dict(), self.default_capacity, self.default_slot_minutes)
            for s in snaps
        ]

    async def get_clinic(self, business_id: str, clinic_id: str) -> Optional[ClinicDto]:
        with store_errors("clinic lookup"):
            snap = await self.db.document(BUSINESSES, business_id, CLINICS, clinic_id).get()
        if not snap.exists:
            return None
        return clinic_from_doc(business_id, snap.id, snap.to_dict(), self.default_capacity, self.default_slot_minutes)

    async def list_slot_records(self, business_id: str, clinic_id: str, start: datetime, end: datetime) -> List[SlotRecordDto]:
        query = (
            self.db.collection(BUSINESSES, business_id, CLINICS, clinic_id, SLOTS)
            .where(filter=FieldFilter("start", ">=", start))
            .where(filter=FieldFilter("start", "<", end))
            .order_by("start")
        )
        with store_errors("slots query"):
            snaps = await query.get()
        return [self._slot_record(business_id, clinic_id, s) for s in snaps]

    async def get_slot_record(self, business_id: str, clinic_id: str, slot_id: str) -> Optional[SlotRecordDto]:
        with store_errors("slot lookup"):
            snap = await self._slot_ref(business_id, clinic_id, slot_id).get()
        if not snap.exists:
            return None
        return self._slot_record(business_id, clinic_id, snap)

    async def join_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: str) -> SlotRecordDto:
        ref = self._slot_ref(business_id, clinic_id, slot_id)

        @async_transactional
        async def join(transaction) -> None:
            snap = await ref.get(transaction=transaction)
            if not snap.exists:
                raise NotFound("Slot not found")
            record = self._slot_record(business_id, clinic_id, snap)
            if user_id in record.booked:
                raise SlotUnavailable("You already booked this slot")
            if len(record.booked) >= record.capacity:
                raise SlotUnavailable("Slot is full")
            update = {"booked": ArrayUnion([user_id]), "lastUpdated": SERVER_TIMESTAMP}
            if len(record.booked) + 1 >= record.capacity:
                update["status"] = "booked"
            transaction.update(ref, update)

        with store_errors("slot booking"):
            await join(self.db.transaction())
            snap = await ref.get()
        return self._slot_record(business_id, clinic_id, snap)

    async def leave_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: str) -> SlotRecordDto:
        ref = self._slot_ref(business_id, clinic_id, slot_id)

        @async_transactional
        async def leave(transaction) -> None:
            snap = await ref.get(transaction=transaction)
            if not snap.exists:
                raise NotFound("Slot not found")
            record = self._slot_record(business_id, clinic_id, snap)
            update = {"booked": ArrayRemove([user_id]), "lastUpdated": SERVER_TIMESTAMP}
            if record.status == "booked":
                update["status"] = "open"
            transaction.update(ref, update)

        with store_errors("slot release"):
            await leave(self.db.transaction())
            snap = await ref.get()
        return self._slot_record(business_id, clinic_id, snap)

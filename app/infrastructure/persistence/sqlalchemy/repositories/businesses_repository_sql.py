from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select
from starlette.concurrency import run_in_threadpool

from .errors import begin_write, from_db_time, store_errors, to_db_time
from .....db.models import Business, BusinessMember, Clinic, ClinicSlot
from .....application.ports.businesses_repo import BusinessDto, BusinessRepository, ClinicDto, SlotRecordDto
from .....exceptions import NotFound, SlotUnavailable


class SqlBusinessRepository(BusinessRepository):
    def __init__(self, engine: Engine):
        self.engine = engine

    def _business_to_dto(self, session: Session, b: Business) -> BusinessDto:
        member_ids = session.exec(
            select(BusinessMember.user_id).where(BusinessMember.business_id == b.id)
        ).all()
        return BusinessDto(id=b.id, owner_id=b.owner_id, member_ids=list(member_ids), status=b.status)

    def _clinic_to_dto(self, c: Clinic) -> ClinicDto:
        return ClinicDto(
            id=c.id,
            business_id=c.business_id,
            title=c.title,
            open_hour=c.open_hour,
            close_hour=c.close_hour,
            slot_minutes=c.slot_minutes,
            capacity=c.capacity,
            timezone=c.timezone,
        )

    def _slot_to_dto(self, s: ClinicSlot) -> SlotRecordDto:
        return SlotRecordDto(
            id=s.id,
            business_id=s.business_id,
            clinic_id=s.clinic_id,
            start=from_db_time(s.start),
            end=from_db_time(s.end),
            status=s.status,
            clinician_id=s.clinician_id,
            booked=list(s.booked or []),
            capacity=s.capacity,
        )

    def _get_business(self, business_id: str) -> Optional[BusinessDto]:
        with store_errors("business lookup"), Session(self.engine) as session:
            b = session.get(Business, business_id)
            return self._business_to_dto(session, b) if b else None

    async def get_business(self, business_id: str) -> Optional[BusinessDto]:
        return await run_in_threadpool(self._get_business, business_id)

    def _list_owned(self, user_id: str) -> List[BusinessDto]:
        with store_errors("owned businesses query"), Session(self.engine) as session:
            rows = session.exec(select(Business).where(Business.owner_id == user_id)).all()
            return [self._business_to_dto(session, b) for b in rows]

    async def list_owned(self, user_id: str) -> List[BusinessDto]:
        return await run_in_threadpool(self._list_owned, user_id)

    def _list_member_of(self, user_id: str) -> List[BusinessDto]:
        with store_errors("member businesses query"), Session(self.engine) as session:
            rows = session.exec(
                select(Business)
                .join(BusinessMember, BusinessMember.business_id == Business.id)
                .where(BusinessMember.user_id == user_id)
            ).all()
            return [self._business_to_dto(session, b) for b in rows]

    async def list_member_of(self, user_id: str) -> List[BusinessDto]:
        return await run_in_threadpool(self._list_member_of, user_id)

    def _list_clinics(self, business_id: str) -> List[ClinicDto]:
        with store_errors("clinics query"), Session(self.engine) as session:
            rows = session.exec(select(Clinic).where(Clinic.business_id == business_id)).all()
            return [self._clinic_to_dto(c) for c in rows]

    async def list_clinics(self, business_id: str) -> List[ClinicDto]:
        return await run_in_threadpool(self._list_clinics, business_id)

    def _get_clinic(self, business_id: str, clinic_id: str) -> Optional[ClinicDto]:
        with store_errors("clinic lookup"), Session(self.engine) as session:
            c = session.exec(
                select(Clinic).where(Clinic.id == clinic_id).where(Clinic.business_id == business_id)
            ).first()
            return self._clinic_to_dto(c) if c else None

    async def get_clinic(self, business_id: str, clinic_id: str) -> Optional[ClinicDto]:
        return await run_in_threadpool(self._get_clinic, business_id, clinic_id)

    def _list_slot_records(self, business_id: str, clinic_id: str, start: datetime, end: datetime) -> List[SlotRecordDto]:
        with store_errors("slots query"), Session(self.engine) as session:
            rows = session.exec(
                select(ClinicSlot)
                .where(ClinicSlot.business_id == business_id)
                .where(ClinicSlot.clinic_id == clinic_id)
                .where(ClinicSlot.start >= to_db_time(start))
                .where(ClinicSlot.start < to_db_time(end))
                .order_by(ClinicSlot.start)
            ).all()
            return [self._slot_to_dto(s) for s in rows]

    async def list_slot_records(self, business_id: str, clinic_id: str, start: datetime, end: datetime) -> List[SlotRecordDto]:
        return await run_in_threadpool(self._list_slot_records, business_id, clinic_id, start, end)

    def _locked_slot(self, session: Session, business_id: str, clinic_id: str, slot_id: str) -> ClinicSlot:
        s = session.exec(
            select(ClinicSlot)
            .where(ClinicSlot.id == slot_id)
            .where(ClinicSlot.business_id == business_id)
            .where(ClinicSlot.clinic_id == clinic_id)
            .with_for_update()
        ).first()
        if not s:
            raise NotFound("Slot not found")
        return s

    def _get_slot_record(self, business_id: str, clinic_id: str, slot_id: str) -> Optional[SlotRecordDto]:
        with store_errors("slot lookup"), Session(self.engine) as session:
            s = session.exec(
                select(ClinicSlot)
                .where(ClinicSlot.id == slot_id)
                .where(ClinicSlot.business_id == business_id)
                .where(ClinicSlot.clinic_id == clinic_id)
            ).first()
            return self._slot_to_dto(s) if s else None

    async def get_slot_record(self, business_id: str, clinic_id: str, slot_id: str) -> Optional[SlotRecordDto]:
        return await run_in_threadpool(self._get_slot_record, business_id, clinic_id, slot_id)

    def _join_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: str) -> SlotRecordDto:
        with store_errors("slot booking"), Session(self.engine) as session:
            begin_write(session)
            s = self._locked_slot(session, business_id, clinic_id, slot_id)
            booked = list(s.booked or [])
            if user_id in booked:
                raise SlotUnavailable("You already booked this slot")
            if len(booked) >= s.capacity:
                raise SlotUnavailable("Slot is full")
            booked.append(user_id)
            # reassign so the JSON column is flagged dirty
            s.booked = booked
            if len(booked) >= s.capacity:
                s.status = "booked"
            s.updated_at = to_db_time(datetime.now(timezone.utc))
            session.add(s)
            session.commit()
            session.refresh(s)
            return self._slot_to_dto(s)

    async def join_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: str) -> SlotRecordDto:
        return await run_in_threadpool(self._join_slot_record, business_id, clinic_id, slot_id, user_id)

    def _leave_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: str) -> SlotRecordDto:
        with store_errors("slot release"), Session(self.engine) as session:
            begin_write(session)
            s = self._locked_slot(session, business_id, clinic_id, slot_id)
            s.booked = [u for u in (s.booked or []) if u != user_id]
            if s.status == "booked" and len(s.booked) < s.capacity:
                s.status = "open"
            s.updated_at = to_db_time(datetime.now(timezone.utc))
            session.add(s)
            session.commit()
            session.refresh(s)
            return self._slot_to_dto(s)

    async def leave_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: str) -> SlotRecordDto:
        return await run_in_threadpool(self._leave_slot_record, business_id, clinic_id, slot_id, user_id)

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select
from starlette.concurrency import run_in_threadpool

from .errors import begin_write, from_db_time, store_errors, to_db_time
from .....db.models import Appointment, Clinic
from .....application.ports.appointments_repo import (
    OCCUPYING_STATUSES,
    AppointmentDto,
    AppointmentRepository,
    AppointmentStatus,
)
from .....exceptions import NotFound, SlotUnavailable


class SqlAppointmentsRepository(AppointmentRepository):
    def __init__(self, engine: Engine):
        self.engine = engine

    def _appt_to_dto(self, a: Appointment) -> AppointmentDto:
        return AppointmentDto(
            id=a.id,
            patient_id=a.patient_id,
            clinician_id=a.clinician_id,
            business_id=a.business_id,
            clinic_id=a.clinic_id,
            start=from_db_time(a.start),
            end=from_db_time(a.end),
            status=AppointmentStatus(a.status),
            reason=a.reason,
            created_at=from_db_time(a.created_at),
            updated_at=from_db_time(a.updated_at),
        )

    def _overlapping(self, session: Session, clinic_id: str, start: datetime, end: datetime) -> List[Appointment]:
        return session.exec(
            select(Appointment)
            .where(Appointment.clinic_id == clinic_id)
            .where(Appointment.status.in_([s.value for s in OCCUPYING_STATUSES]))
            .where(Appointment.start < to_db_time(end))
            .where(Appointment.end > to_db_time(start))
        ).all()

    def _get_by_id(self, appointment_id: str) -> Optional[AppointmentDto]:
        with store_errors("appointment lookup"), Session(self.engine) as session:
            a = session.get(Appointment, appointment_id)
            return self._appt_to_dto(a) if a else None

    async def get_by_id(self, appointment_id: str) -> Optional[AppointmentDto]:
        return await run_in_threadpool(self._get_by_id, appointment_id)

    def _find_overlapping(self, clinic_id: str, start: datetime, end: datetime) -> List[AppointmentDto]:
        with store_errors("overlap query"), Session(self.engine) as session:
            return [self._appt_to_dto(a) for a in self._overlapping(session, clinic_id, start, end)]

    async def find_overlapping(self, clinic_id: str, start: datetime, end: datetime) -> List[AppointmentDto]:
        return await run_in_threadpool(self._find_overlapping, clinic_id, start, end)

    def _reserve_slot(self, business_id, clinic_id, clinician_id, patient_id, start, end, capacity, reason) -> AppointmentDto:
        with store_errors("reservation"), Session(self.engine) as session:
            begin_write(session)
            # the clinic row lock serializes reservations of the same clinic
            clinic = session.exec(select(Clinic).where(Clinic.id == clinic_id).with_for_update()).first()
            if not clinic:
                raise NotFound(f"Clinic {clinic_id} not found")

            taken = self._overlapping(session, clinic_id, start, end)
            if any(a.patient_id == patient_id for a in taken):
                raise SlotUnavailable("You already booked this slot")
            if len(taken) >= capacity:
                raise SlotUnavailable()

            appt = Appointment(
                patient_id=patient_id,
                clinician_id=clinician_id,
                business_id=business_id,
                clinic_id=clinic_id,
                start=to_db_time(start),
                end=to_db_time(end),
                status=AppointmentStatus.PENDING.value,
                reason=reason,
            )
            session.add(appt)
            session.commit()
            session.refresh(appt)
            return self._appt_to_dto(appt)

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
        return await run_in_threadpool(
            self._reserve_slot, business_id, clinic_id, clinician_id, patient_id, start, end, capacity, reason
        )

    def _update_status(self, appointment_id: str, status: AppointmentStatus) -> AppointmentDto:
        with store_errors("status update"), Session(self.engine) as session:
            a = session.get(Appointment, appointment_id)
            if not a:
                raise NotFound("Appointment not found")
            a.status = status.value
            a.updated_at = to_db_time(datetime.now(timezone.utc))
            session.add(a)
            session.commit()
            session.refresh(a)
            return self._appt_to_dto(a)

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> AppointmentDto:
        return await run_in_threadpool(self._update_status, appointment_id, status)

    def _list_where(self, column, user_id: str, since: datetime) -> List[AppointmentDto]:
        with store_errors("appointments query"), Session(self.engine) as session:
            rows = session.exec(
                select(Appointment)
                .where(column == user_id)
                .where(Appointment.start >= to_db_time(since))
                .order_by(Appointment.start)
            ).all()
            return [self._appt_to_dto(r) for r in rows]

    async def list_for_patient(self, user_id: str, since: datetime) -> List[AppointmentDto]:
        return await run_in_threadpool(self._list_where, Appointment.patient_id, user_id, since)

    async def list_for_clinician(self, user_id: str, since: datetime) -> List[AppointmentDto]:
        return await run_in_threadpool(self._list_where, Appointment.clinician_id, user_id, since)

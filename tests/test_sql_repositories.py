import asyncio
import time
from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from app.application.ports.appointments_repo import AppointmentStatus
from app.database import build_engine, create_db_and_tables
from app.db.models import Business, BusinessMember, Clinic, ClinicSlot
from app.exceptions import NotFound, SlotUnavailable
from app.infrastructure.persistence.sqlalchemy.repositories.appointments_repository_sql import SqlAppointmentsRepository
from app.infrastructure.persistence.sqlalchemy.repositories.businesses_repository_sql import SqlBusinessRepository

from conftest import at


def seed_tables(engine, capacity=2):
    create_db_and_tables(engine)
    with Session(engine) as session:
        session.add(Business(id="b1", owner_id="doc"))
        session.add(BusinessMember(business_id="b1", user_id="nurse"))
        session.add(Clinic(id="c1", business_id="b1", title="Main Street", open_hour=9, close_hour=17, capacity=capacity))
        session.add(ClinicSlot(
            id="s1", business_id="b1", clinic_id="c1", clinician_id="doc",
            start=datetime(2030, 1, 7, 10, tzinfo=timezone.utc),
            end=datetime(2030, 1, 7, 11, tzinfo=timezone.utc),
            capacity=capacity,
        ))
        session.commit()
    return engine


@pytest.fixture
def engine():
    return seed_tables(create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    ))


@pytest.fixture
def file_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'scheduling.db'}")
    yield seed_tables(engine, capacity=1)
    engine.dispose()


async def test_business_lookups(engine):
    repo = SqlBusinessRepository(engine)
    business = await repo.get_business("b1")
    assert business.owner_id == "doc"
    assert business.member_ids == ["nurse"]
    assert [b.id for b in await repo.list_owned("doc")] == ["b1"]
    assert [b.id for b in await repo.list_member_of("nurse")] == ["b1"]
    assert await repo.list_member_of("doc") == []
    assert await repo.get_business("missing") is None

    clinic = await repo.get_clinic("b1", "c1")
    assert (clinic.open_hour, clinic.close_hour, clinic.capacity) == (9, 17, 2)
    assert await repo.get_clinic("other", "c1") is None
    assert [c.id for c in await repo.list_clinics("b1")] == ["c1"]


async def test_slot_records_come_back_in_utc(engine):
    repo = SqlBusinessRepository(engine)
    records = await repo.list_slot_records("b1", "c1", at(0), at(23))
    assert [r.id for r in records] == ["s1"]
    assert records[0].start == at(10)
    assert records[0].start.utcoffset().total_seconds() == 0
    assert await repo.list_slot_records("b1", "c1", at(11), at(23)) == []


async def test_join_and_leave_slot_record(engine):
    repo = SqlBusinessRepository(engine)
    record = await repo.join_slot_record("b1", "c1", "s1", "p1")
    assert record.booked == ["p1"]

    with pytest.raises(SlotUnavailable):
        await repo.join_slot_record("b1", "c1", "s1", "p1")

    record = await repo.join_slot_record("b1", "c1", "s1", "p2")
    assert record.status == "booked"
    with pytest.raises(SlotUnavailable):
        await repo.join_slot_record("b1", "c1", "s1", "p3")

    record = await repo.leave_slot_record("b1", "c1", "s1", "p1")
    assert record.booked == ["p2"]
    assert record.status == "open"
    assert (await repo.get_slot_record("b1", "c1", "s1")).booked == ["p2"]

    with pytest.raises(NotFound):
        await repo.join_slot_record("b1", "c1", "missing", "p1")


async def test_reserve_slot_and_overlap(engine):
    repo = SqlAppointmentsRepository(engine)

    async def reserve(patient):
        return await repo.reserve_slot(
            business_id="b1", clinic_id="c1", clinician_id="doc", patient_id=patient,
            start=at(10), end=at(11), capacity=2, reason="checkup",
        )

    first = await reserve("p1")
    assert first.status == AppointmentStatus.PENDING
    assert first.start == at(10)
    await reserve("p2")
    with pytest.raises(SlotUnavailable):
        await reserve("p3")

    assert {a.patient_id for a in await repo.find_overlapping("c1", at(10, 30), at(11, 30))} == {"p1", "p2"}
    assert await repo.find_overlapping("c1", at(11), at(12)) == []

    cancelled = await repo.update_status(first.id, AppointmentStatus.CANCELLED)
    assert cancelled.status == AppointmentStatus.CANCELLED
    assert (await reserve("p3")).patient_id == "p3"


async def test_reserve_unknown_clinic(engine):
    repo = SqlAppointmentsRepository(engine)
    with pytest.raises(NotFound):
        await repo.reserve_slot(
            business_id="b1", clinic_id="nope", clinician_id="doc", patient_id="p1",
            start=at(10), end=at(11), capacity=2,
        )


async def test_appointment_listings(engine):
    repo = SqlAppointmentsRepository(engine)
    appt = await repo.reserve_slot(
        business_id="b1", clinic_id="c1", clinician_id="doc", patient_id="p1",
        start=at(10), end=at(11), capacity=2,
    )
    assert [a.id for a in await repo.list_for_patient("p1", at(0))] == [appt.id]
    assert [a.id for a in await repo.list_for_clinician("doc", at(0))] == [appt.id]
    assert await repo.list_for_patient("p1", at(11)) == []
    assert (await repo.get_by_id(appt.id)).reason == ""
    assert await repo.get_by_id("missing") is None


class SlowCountAppointments(SqlAppointmentsRepository):
    """Widens the gap between counting a slot's bookings and inserting one."""

    def _overlapping(self, session, clinic_id, start, end):
        taken = super()._overlapping(session, clinic_id, start, end)
        time.sleep(0.1)
        return taken


class SlowReadSlots(SqlBusinessRepository):
    def _locked_slot(self, session, business_id, clinic_id, slot_id):
        slot = super()._locked_slot(session, business_id, clinic_id, slot_id)
        time.sleep(0.1)
        return slot


async def test_concurrent_reservations_respect_capacity(file_engine):
    repo = SlowCountAppointments(file_engine)
    results = await asyncio.gather(
        *[
            repo.reserve_slot(
                business_id="b1", clinic_id="c1", clinician_id="doc", patient_id=patient,
                start=at(10), end=at(11), capacity=1,
            )
            for patient in ("p1", "p2", "p3")
        ],
        return_exceptions=True,
    )
    assert sum(isinstance(r, SlotUnavailable) for r in results) == 2
    assert len(await repo.find_overlapping("c1", at(10), at(11))) == 1


async def test_concurrent_slot_record_joins_respect_capacity(file_engine):
    repo = SlowReadSlots(file_engine)
    results = await asyncio.gather(
        *[repo.join_slot_record("b1", "c1", "s1", patient) for patient in ("p1", "p2", "p3")],
        return_exceptions=True,
    )
    assert sum(isinstance(r, SlotUnavailable) for r in results) == 2
    record = await repo.get_slot_record("b1", "c1", "s1")
    assert len(record.booked) == 1
    assert record.status == "booked"


async def test_stored_times_are_timezone_aware(engine):
    repo = SqlAppointmentsRepository(engine)
    appt = await repo.reserve_slot(
        business_id="b1", clinic_id="c1", clinician_id="doc", patient_id="p1",
        start=at(10), end=at(11), capacity=2,
    )
    stored = await repo.get_by_id(appt.id)
    assert stored.start == at(10)
    assert stored.created_at.tzinfo is not None
    assert stored.updated_at.utcoffset().total_seconds() == 0

import asyncio
from datetime import date, datetime, timezone

import pytest

from app.application.ports.appointments_repo import AppointmentStatus
from app.application.ports.businesses_repo import BusinessDto, ClinicDto, SlotRecordDto
from app.application.services.availability_service import ViewerRole
from app.application.services.calendar_service import (
    CLINICIAN_BOOKED_COLOR,
    CLINICIAN_OPEN_COLOR,
    PATIENT_COLOR,
    CalendarService,
    EventType,
)
from app.exceptions import AuthenticationRequired
from app.infrastructure.persistence.memory.scheduling_store import InMemorySchedulingStore

from conftest import at, make_appt, seed


def clock():
    return datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)


def calendar(store, **kwargs):
    return CalendarService(business_repo=store, appointments_repo=store, clock=clock, **kwargs)


def record(id, start, clinician="doc", booked=(), status="open", business="b1", clinic="c1"):
    return SlotRecordDto(
        id=id,
        business_id=business,
        clinic_id=clinic,
        start=start,
        end=start.replace(hour=start.hour + 1),
        status=status,
        clinician_id=clinician,
        booked=list(booked),
    )


def by_id(result):
    return {e.id: e for e in result.events}


async def test_window_starts_at_local_midnight():
    service = CalendarService(
        business_repo=None, appointments_repo=None, clock=clock, timezone_name="America/New_York"
    )
    window = service.window()
    # 08:00 UTC is 03:00 in New York, same day
    assert window.start == datetime(2030, 1, 7, 5, 0, tzinfo=timezone.utc)
    assert (window.end - window.start).days == 7


async def test_user_without_records_gets_empty_calendar(store):
    result = await calendar(store).aggregate("nobody")
    assert result.events == []
    assert result.failures == []
    assert result.error is None


async def test_calendar_requires_user(store):
    with pytest.raises(AuthenticationRequired):
        await calendar(store).aggregate(None)


async def test_slot_record_events(store):
    store.add_slot_record(record("open", at(10), booked=["p1"]))
    store.add_slot_record(record("mine", at(12), clinician="nurse", booked=["doc"]))
    store.add_slot_record(record("self", at(14), booked=["doc"], status="booked"))
    store.add_slot_record(record("other", at(15), clinician="nurse"))

    events = by_id(await calendar(store).aggregate("doc"))
    assert set(events) == {"slot-open", "slot-mine", "slot-self"}

    open_slot = events["slot-open"]
    assert open_slot.type == EventType.SLOT
    assert open_slot.title == "Patient slot (Open)"
    assert open_slot.color == CLINICIAN_OPEN_COLOR
    assert open_slot.role == ViewerRole.CLINICIAN
    assert open_slot.clinic_name == "Main Street"
    assert open_slot.patient_count == 1

    assert events["slot-mine"].title == "My appointment"
    assert events["slot-mine"].color == PATIENT_COLOR
    assert events["slot-mine"].role == ViewerRole.PATIENT

    assert events["slot-self"].title == "My own appointment"
    assert events["slot-self"].color == CLINICIAN_BOOKED_COLOR
    assert events["slot-self"].role == ViewerRole.BOTH


async def test_member_sees_slot_records_of_business(store):
    store.add_slot_record(record("s1", at(10), clinician="nurse", booked=["p1", "p2"], status="booked"))
    events = by_id(await calendar(store).aggregate("nurse"))
    assert events["slot-s1"].title == "Patient slot (Booked)"
    assert events["slot-s1"].color == CLINICIAN_BOOKED_COLOR


async def test_appointment_events_by_role(store):
    store.add_appointment(make_appt("a1", patient="p1", clinician="doc", start=at(9)))
    store.add_appointment(make_appt("a2", patient="doc", clinician="doc", start=at(11)))

    doc = by_id(await calendar(store).aggregate("doc"))
    assert doc["appt-a1"].title == "Client Appointment"
    assert doc["appt-a1"].role == ViewerRole.CLINICIAN
    assert doc["appt-a2"].title == "My own appointment"
    assert doc["appt-a2"].role == ViewerRole.BOTH

    patient = by_id(await calendar(store).aggregate("p1"))
    assert list(patient) == ["appt-a1"]
    assert patient["appt-a1"].title == "My Appointment"
    assert patient["appt-a1"].color == PATIENT_COLOR
    assert patient["appt-a1"].type == EventType.APPOINTMENT


async def test_self_booked_appointment_listed_once(store):
    store.add_appointment(make_appt("a2", patient="doc", clinician="doc"))
    result = await calendar(store).aggregate("doc")
    assert [e.id for e in result.events] == ["appt-a2"]


async def test_role_filter(store):
    store.add_appointment(make_appt("a1", patient="p1", clinician="doc"))
    store.add_appointment(make_appt("a2", patient="doc", clinician="other", start=at(12)))
    store.add_slot_record(record("s1", at(14), booked=["p1"]))

    result = await calendar(store).aggregate("doc", ViewerRole.PATIENT)
    assert [e.id for e in result.events] == ["appt-a2"]
    assert result.events[0].title == "My Appointment"

    result = await calendar(store).aggregate("doc", ViewerRole.CLINICIAN)
    assert [e.id for e in result.events] == ["appt-a1", "slot-s1"]


async def test_window_and_status_filters(store):
    store.add_appointment(make_appt("past", patient="p1", start=at(10, day=date(2030, 1, 6))))
    store.add_appointment(make_appt("gone", patient="p1", status=AppointmentStatus.CANCELLED))
    store.add_appointment(make_appt("kept", patient="p1", start=at(9, day=date(2030, 1, 13))))
    store.add_slot_record(record("late", at(10, day=date(2030, 1, 14))))
    store.add_slot_record(record("soon", at(10, day=date(2030, 1, 13))))

    assert [e.id for e in (await calendar(store).aggregate("p1")).events] == ["appt-kept"]
    assert [e.id for e in (await calendar(store).aggregate("doc")).events] == ["appt-kept", "slot-soon"]


async def test_events_sorted_by_start(store):
    store.add_slot_record(record("s1", at(15)))
    store.add_appointment(make_appt("a1", patient="p1", start=at(9)))
    store.add_slot_record(record("s2", at(11, day=date(2030, 1, 8))))
    store.add_appointment(make_appt("a2", patient="p2", start=at(12)))

    result = await calendar(store).aggregate("doc")
    assert [e.id for e in result.events] == ["appt-a1", "appt-a2", "slot-s1", "slot-s2"]


class FlakySlotsStore(InMemorySchedulingStore):
    """Slot record reads of business b1 fail."""

    async def list_slot_records(self, business_id, clinic_id, start, end):
        if business_id == "b1":
            raise RuntimeError("backend unavailable")
        return await super().list_slot_records(business_id, clinic_id, start, end)


async def test_failing_business_is_skipped():
    store = seed(FlakySlotsStore())
    store.add_business(BusinessDto(id="b2", owner_id="doc"))
    store.add_clinic(ClinicDto(id="c2", business_id="b2", title="Annex", open_hour=9, close_hour=17))
    store.add_slot_record(record("s1", at(10)))
    store.add_slot_record(record("s2", at(11), business="b2", clinic="c2"))

    result = await calendar(store).aggregate("doc")
    assert [e.id for e in result.events] == ["slot-s2"]
    assert result.error is None
    assert result.partial
    assert {f.source for f in result.failures} == {"slots:b1/c1", "slots:b1/tiny"}


class BrokenStore(InMemorySchedulingStore):
    async def list_owned(self, user_id):
        raise RuntimeError("down")

    async def list_member_of(self, user_id):
        raise RuntimeError("down")

    async def list_for_patient(self, user_id, since):
        raise RuntimeError("down")

    async def list_for_clinician(self, user_id, since):
        raise RuntimeError("down")


async def test_all_sources_failing_reports_error():
    result = await calendar(seed(BrokenStore())).aggregate("doc")
    assert result.events == []
    assert result.error == "Unable to load calendar"
    assert len(result.failures) == 4
    assert not result.partial


class SlowPatientStore(InMemorySchedulingStore):
    async def list_for_patient(self, user_id, since):
        await asyncio.sleep(1)
        return []


async def test_slow_source_times_out_alone():
    store = seed(SlowPatientStore())
    store.add_appointment(make_appt("a1", patient="p1", clinician="doc"))

    result = await calendar(store, timeout_seconds=0.05).aggregate("doc")
    assert [e.id for e in result.events] == ["appt-a1"]
    assert [f.source for f in result.failures] == ["appointments:patient"]
    assert result.error is None


async def test_watch_without_feed_yields_current_calendar(store):
    store.add_appointment(make_appt("a1", patient="p1"))
    results = [r async for r in calendar(store).watch("p1")]
    assert len(results) == 1
    assert [e.id for e in results[0].events] == ["appt-a1"]


async def test_watch_recomputes_on_change(store):
    updates = calendar(store, change_feed=store).watch("p1")

    first = await updates.__anext__()
    assert first.events == []

    store.add_appointment(make_appt("a1", patient="p1"))
    second = await asyncio.wait_for(updates.__anext__(), timeout=1)
    assert [e.id for e in second.events] == ["appt-a1"]

    store.close_subscriptions("p1")
    with pytest.raises(StopAsyncIteration):
        await updates.__anext__()
    assert store.subscribed_users == []


class WriteDuringReadStore(InMemorySchedulingStore):
    """Lands ``incoming`` right after the next patient lookup has been read."""

    incoming = None

    async def list_for_patient(self, user_id, since):
        result = await super().list_for_patient(user_id, since)
        if self.incoming is not None:
            self.add_appointment(self.incoming)
            self.incoming = None
        return result


async def test_watch_recomputes_change_made_during_first_calendar():
    store = seed(WriteDuringReadStore())
    store.incoming = make_appt("a1", patient="p1")
    updates = calendar(store, change_feed=store).watch("p1", ViewerRole.PATIENT)

    first = await updates.__anext__()
    assert first.events == []
    second = await asyncio.wait_for(updates.__anext__(), timeout=1)
    assert [e.id for e in second.events] == ["appt-a1"]
    await updates.aclose()


async def test_closing_watch_releases_subscription(store):
    updates = calendar(store, change_feed=store).watch("p1")
    await updates.__anext__()
    assert store.subscribed_users == ["p1"]

    await updates.aclose()
    assert store.subscribed_users == []

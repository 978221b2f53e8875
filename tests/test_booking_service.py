import asyncio

import pytest

from app.application.ports.appointments_repo import AppointmentStatus
from app.application.ports.businesses_repo import SlotRecordDto
from app.application.services.availability_service import AvailabilityService
from app.application.services.booking_service import BookingService
from app.exceptions import (
    AuthenticationRequired,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    SlotUnavailable,
)

from conftest import DAY, at, make_appt


def services(store, audit=None):
    availability = AvailabilityService(business_repo=store, appointments_repo=store)
    booking = BookingService(appointments_repo=store, business_repo=store, audit=audit)
    return availability, booking


async def test_reserve_creates_pending_appointment(store, audit):
    availability, booking = services(store, audit)
    slot = await availability.find_slot("b1", "c1", at(10), user_id="p1")

    appt = await booking.reserve(slot, "p1", reason="  checkup ")
    assert appt.status == AppointmentStatus.PENDING
    assert appt.patient_id == "p1"
    assert appt.clinician_id == "doc"
    assert appt.clinic_id == "c1"
    assert appt.reason == "checkup"
    assert (appt.start, appt.end) == (at(10), at(11))
    assert audit.entries[-1][0] == "reserve" and audit.entries[-1][3] is True

    slot = await availability.find_slot("b1", "c1", at(10), user_id="p1")
    assert slot.remaining_capacity == 19
    assert slot.is_booked_by_caller


async def test_reserve_requires_user(store):
    availability, booking = services(store)
    slot = await availability.find_slot("b1", "c1", at(10))
    with pytest.raises(AuthenticationRequired):
        await booking.reserve(slot, None)
    assert store.appointments == []


async def test_full_slot_rejects_next_patient(store, audit):
    availability, booking = services(store, audit)
    slot = await availability.find_slot("b1", "tiny", at(10))
    await booking.reserve(slot, "p1")

    slot = await availability.find_slot("b1", "tiny", at(10))
    assert not slot.available
    with pytest.raises(SlotUnavailable):
        await booking.reserve(slot, "p2")
    assert len(store.appointments) == 1
    assert audit.entries[-1][3] is False


async def test_stale_slot_is_rejected_by_store(store):
    availability, booking = services(store)
    stale = await availability.find_slot("b1", "tiny", at(10))
    results = await asyncio.gather(
        booking.reserve(stale, "p1"),
        booking.reserve(stale, "p2"),
        return_exceptions=True,
    )
    assert sum(isinstance(r, SlotUnavailable) for r in results) == 1
    assert len(store.appointments) == 1


async def test_patient_cannot_hold_two_places_in_one_slot(store):
    availability, booking = services(store)
    slot = await availability.find_slot("b1", "c1", at(10))
    await booking.reserve(slot, "p1")
    with pytest.raises(SlotUnavailable):
        await booking.reserve(slot, "p1")


async def test_reserve_unknown_business(store):
    availability, booking = services(store)
    slot = await availability.find_slot("b1", "c1", at(10))
    slot.business_id = "gone"
    with pytest.raises(NotFound):
        await booking.reserve(slot, "p1")


async def test_stranger_cannot_cancel(store, audit):
    store.add_appointment(make_appt("a1", patient="p1"))
    _, booking = services(store, audit)
    with pytest.raises(PermissionDenied):
        await booking.cancel_by_id("a1", "stranger")
    assert (await store.get_by_id("a1")).status == AppointmentStatus.BOOKED
    assert audit.entries[-1] == ("cancel", "stranger", "a1", False)


async def test_patient_cancel_is_idempotent(store):
    store.add_appointment(make_appt("a1", patient="p1"))
    _, booking = services(store)
    first = await booking.cancel_by_id("a1", "p1")
    second = await booking.cancel_by_id("a1", "p1")
    assert first.status == second.status == AppointmentStatus.CANCELLED


async def test_clinician_can_cancel(store):
    store.add_appointment(make_appt("a1", patient="p1", clinician="doc"))
    _, booking = services(store)
    assert (await booking.cancel_by_id("a1", "doc")).status == AppointmentStatus.CANCELLED


async def test_cancel_frees_the_place(store):
    availability, booking = services(store)
    slot = await availability.find_slot("b1", "tiny", at(10))
    appt = await booking.reserve(slot, "p1")
    await booking.cancel(appt, "p1")
    slot = await availability.find_slot("b1", "tiny", at(10))
    assert slot.available
    await booking.reserve(slot, "p2")


async def test_completed_appointment_cannot_be_cancelled(store):
    store.add_appointment(make_appt("a1", status=AppointmentStatus.COMPLETED))
    _, booking = services(store)
    with pytest.raises(InvalidTransition):
        await booking.cancel_by_id("a1", "p1")


async def test_cancel_unknown_appointment(store):
    _, booking = services(store)
    with pytest.raises(NotFound):
        await booking.cancel_by_id("missing", "p1")


async def test_status_transitions(store):
    store.add_appointment(make_appt("a1", patient="p1", clinician="doc", status=AppointmentStatus.PENDING))
    _, booking = services(store)

    with pytest.raises(PermissionDenied):
        await booking.update_status("a1", AppointmentStatus.BOOKED, "p1")

    booked = await booking.update_status("a1", AppointmentStatus.BOOKED, "doc")
    assert booked.status == AppointmentStatus.BOOKED

    with pytest.raises(InvalidTransition):
        await booking.update_status("a1", AppointmentStatus.PENDING, "doc")

    done = await booking.update_status("a1", AppointmentStatus.COMPLETED, "doc")
    assert done.status == AppointmentStatus.COMPLETED

    with pytest.raises(InvalidTransition):
        await booking.update_status("a1", AppointmentStatus.CANCELLED, "p1")


async def test_pending_cannot_skip_to_completed(store):
    store.add_appointment(make_appt("a1", status=AppointmentStatus.PENDING))
    _, booking = services(store)
    with pytest.raises(InvalidTransition):
        await booking.update_status("a1", AppointmentStatus.COMPLETED, "doc")


async def test_stranger_cannot_change_status(store, audit):
    store.add_appointment(make_appt("a1", status=AppointmentStatus.BOOKED))
    _, booking = services(store, audit)
    for status in (AppointmentStatus.PENDING, AppointmentStatus.BOOKED, AppointmentStatus.COMPLETED):
        with pytest.raises(PermissionDenied):
            await booking.update_status("a1", status, "stranger")
    assert (await store.get_by_id("a1")).status == AppointmentStatus.BOOKED
    assert audit.entries[-1] == ("status", "stranger", "a1", False)


def add_slot_record(store, capacity=2, booked=None, status="open"):
    return store.add_slot_record(SlotRecordDto(
        id="s1",
        business_id="b1",
        clinic_id="c1",
        start=at(10, day=DAY),
        end=at(11, day=DAY),
        clinician_id="doc",
        booked=list(booked or []),
        capacity=capacity,
        status=status,
    ))


async def test_join_slot_record_until_full(store):
    add_slot_record(store, capacity=2)
    _, booking = services(store)

    record = await booking.join_slot_record("b1", "c1", "s1", "p1")
    assert record.booked == ["p1"] and record.status == "open"
    record = await booking.join_slot_record("b1", "c1", "s1", "p2")
    assert record.status == "booked"

    with pytest.raises(SlotUnavailable):
        await booking.join_slot_record("b1", "c1", "s1", "p3")
    with pytest.raises(AuthenticationRequired):
        await booking.join_slot_record("b1", "c1", "s1", "")


async def test_join_twice_is_rejected(store):
    add_slot_record(store, booked=["p1"])
    _, booking = services(store)
    with pytest.raises(SlotUnavailable):
        await booking.join_slot_record("b1", "c1", "s1", "p1")


async def test_leave_slot_record(store):
    add_slot_record(store, capacity=2, booked=["p1", "p2"], status="booked")
    _, booking = services(store)

    with pytest.raises(PermissionDenied):
        await booking.leave_slot_record("b1", "c1", "s1", "p2", patient_id="p1")

    record = await booking.leave_slot_record("b1", "c1", "s1", "p1")
    assert record.booked == ["p2"]
    assert record.status == "open"

    record = await booking.leave_slot_record("b1", "c1", "s1", "doc", patient_id="p2")
    assert record.booked == []

    with pytest.raises(NotFound):
        await booking.leave_slot_record("b1", "c1", "s1", "p1")
    with pytest.raises(NotFound):
        await booking.leave_slot_record("b1", "c1", "missing", "p1")

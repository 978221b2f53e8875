from datetime import date, datetime, timedelta, timezone

import pytest

from app.application.ports.appointments_repo import AppointmentDto, AppointmentStatus
from app.application.ports.businesses_repo import BusinessDto, ClinicDto
from app.infrastructure.persistence.memory.scheduling_store import InMemorySchedulingStore

DAY = date(2030, 1, 7)


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def make_appt(id, patient="p1", start=None, minutes=60, status=AppointmentStatus.BOOKED,
              clinician="doc", business="b1", clinic="c1"):
    start = start or at(10)
    return AppointmentDto(
        id=id,
        patient_id=patient,
        clinician_id=clinician,
        business_id=business,
        clinic_id=clinic,
        start=start,
        end=start + timedelta(minutes=minutes),
        status=status,
        reason="",
        created_at=at(0),
    )


class RecordingAudit:
    def __init__(self):
        self.entries = []

    def log(self, action, user_id, target_id=None, success=True, details=None):
        self.entries.append((action, user_id, target_id, success))


def seed(s):
    s.add_business(BusinessDto(id="b1", owner_id="doc", member_ids=["nurse"]))
    s.add_clinic(ClinicDto(id="c1", business_id="b1", title="Main Street", open_hour=9, close_hour=17, capacity=20))
    s.add_clinic(ClinicDto(id="tiny", business_id="b1", title="Back Room", open_hour=9, close_hour=17, capacity=1))
    return s


@pytest.fixture
def store():
    return seed(InMemorySchedulingStore())


@pytest.fixture
def audit():
    return RecordingAudit()

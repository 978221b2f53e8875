"""
Calendar aggregation

Builds one user's calendar for the coming days out of two kinds of records:

- slot records of the clinics of every business the user owns or works for
  (the user being the slot's clinician or one of its booked patients)
- appointment records where the user is the patient or the clinician

Every store read is guarded on its own. A failing source is logged and
skipped so the caller still gets what the other sources returned; the result
only carries an error when every source that was tried failed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, TypeVar

from .availability_service import ViewerRole
from .slot_generator import TimeWindow, day_bounds, resolve_tz
from ..ports.appointments_repo import AppointmentChangeFeed, AppointmentDto, AppointmentRepository, AppointmentStatus
from ..ports.businesses_repo import BusinessRepository, ClinicDto, SlotRecordDto
from ...exceptions import AuthenticationRequired

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLINICIAN_BOOKED_COLOR = "#2563EB"
CLINICIAN_OPEN_COLOR = "#93C5FD"
PATIENT_COLOR = "#16A34A"


class EventType(str, Enum):
    SLOT = "slot"
    APPOINTMENT = "appointment"


@dataclass
class CalendarEvent:
    id: str
    type: EventType
    start: datetime
    end: datetime
    title: str
    color: str
    role: ViewerRole
    status: str
    business_id: Optional[str] = None
    clinic_name: Optional[str] = None
    clinician_id: str = ""
    patient_id: Optional[str] = None
    patient_count: int = 0
    reason: str = ""


@dataclass
class SourceFailure:
    source: str
    error: str


@dataclass
class CalendarResult:
    events: List[CalendarEvent] = field(default_factory=list)
    failures: List[SourceFailure] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def partial(self) -> bool:
        return bool(self.failures) and self.error is None


class _Sources:
    """Counts the store reads of one aggregation and records the failed ones."""

    def __init__(self, timeout_seconds: Optional[float]) -> None:
        self.timeout_seconds = timeout_seconds
        self.attempted = 0
        self.failures: List[SourceFailure] = []

    async def fetch(self, source: str, coro: Awaitable[T]) -> Optional[T]:
        self.attempted += 1
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.warning(f"Calendar source {source} failed, skipping: {message}")
            self.failures.append(SourceFailure(source=source, error=message))
            return None

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and len(self.failures) == self.attempted


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _wants_patient(role: ViewerRole) -> bool:
    return role in (ViewerRole.PATIENT, ViewerRole.BOTH)


def _wants_clinician(role: ViewerRole) -> bool:
    return role in (ViewerRole.CLINICIAN, ViewerRole.BOTH)


def slot_record_event(record: SlotRecordDto, clinic_name: str, user_id: str, role: ViewerRole) -> Optional[CalendarEvent]:
    is_doc = bool(record.clinician_id) and record.clinician_id == user_id
    is_pat = user_id in record.booked
    is_doc = is_doc and _wants_clinician(role)
    is_pat = is_pat and _wants_patient(role)
    if not is_doc and not is_pat:
        return None

    if is_doc:
        if is_pat:
            title = "My own appointment"
        else:
            title = f"Patient slot ({'Booked' if record.status == 'booked' else 'Open'})"
        color = CLINICIAN_BOOKED_COLOR if record.status == "booked" else CLINICIAN_OPEN_COLOR
    else:
        title = "My appointment"
        color = PATIENT_COLOR

    if is_doc and is_pat:
        event_role = ViewerRole.BOTH
    elif is_doc:
        event_role = ViewerRole.CLINICIAN
    else:
        event_role = ViewerRole.PATIENT

    return CalendarEvent(
        id=f"slot-{record.id}",
        type=EventType.SLOT,
        start=record.start,
        end=record.end,
        title=title,
        color=color,
        role=event_role,
        status=record.status,
        business_id=record.business_id,
        clinic_name=clinic_name,
        clinician_id=record.clinician_id,
        patient_count=len(record.booked),
    )


def appointment_event(appointment: AppointmentDto, role: ViewerRole) -> CalendarEvent:
    if role == ViewerRole.CLINICIAN:
        title, color = "Client Appointment", CLINICIAN_BOOKED_COLOR
    elif role == ViewerRole.BOTH:
        title, color = "My own appointment", CLINICIAN_BOOKED_COLOR
    else:
        title, color = "My Appointment", PATIENT_COLOR
    return CalendarEvent(
        id=f"appt-{appointment.id}",
        type=EventType.APPOINTMENT,
        start=appointment.start,
        end=appointment.end,
        title=title,
        color=color,
        role=role,
        status=appointment.status.value,
        business_id=appointment.business_id,
        clinician_id=appointment.clinician_id,
        patient_id=appointment.patient_id,
        reason=appointment.reason,
    )


@dataclass
class CalendarService:
    business_repo: BusinessRepository
    appointments_repo: AppointmentRepository
    change_feed: Optional[AppointmentChangeFeed] = None
    window_days: int = 7
    timezone_name: str = "UTC"
    timeout_seconds: Optional[float] = None
    clock: Callable[[], datetime] = _utcnow

    def window(self) -> TimeWindow:
        zone = resolve_tz(self.timezone_name)
        today = self.clock().astimezone(zone).date()
        start = day_bounds(today, zone).start
        end = day_bounds(today + timedelta(days=self.window_days), zone).start
        return TimeWindow(start=start, end=end)

    async def aggregate(self, user_id: Optional[str], role: ViewerRole = ViewerRole.BOTH) -> CalendarResult:
        if not user_id:
            raise AuthenticationRequired("Authentication required to access calendar data")

        window = self.window()
        sources = _Sources(self.timeout_seconds)
        slot_events, appointment_events = await asyncio.gather(
            self._slot_events(sources, user_id, role, window),
            self._appointment_events(sources, user_id, role, window),
        )

        if sources.all_failed:
            logger.error(f"Calendar load failed for user {user_id}: all {sources.attempted} sources failed")
            return CalendarResult(events=[], failures=sources.failures, error="Unable to load calendar")

        events = slot_events + appointment_events
        events.sort(key=lambda e: e.start)
        return CalendarResult(events=events, failures=sources.failures)

    async def watch(self, user_id: Optional[str], role: ViewerRole = ViewerRole.BOTH) -> AsyncIterator[CalendarResult]:
        """
        The current calendar, then a full recomputation after every change
        notification for the user. Ends when the change subscription ends;
        without a change feed only the current calendar is produced.

        The subscription is opened before the first aggregate, so a change
        landing while a calendar is computed triggers another recomputation.
        """
        if not user_id:
            raise AuthenticationRequired("Authentication required to access calendar data")
        if self.change_feed is None:
            yield await self.aggregate(user_id, role)
            return

        changes = self.change_feed.subscribe(user_id)
        try:
            yield await self.aggregate(user_id, role)
            async for change in changes:
                logger.debug(f"Appointment change on {change.field} for user {user_id}, recomputing calendar")
                yield await self.aggregate(user_id, role)
        finally:
            await changes.aclose()

    async def _business_ids(self, sources: _Sources, user_id: str) -> List[str]:
        owned, member_of = await asyncio.gather(
            sources.fetch("businesses:owner", self.business_repo.list_owned(user_id)),
            sources.fetch("businesses:member", self.business_repo.list_member_of(user_id)),
        )
        ids: Dict[str, None] = {}
        for business in (owned or []) + (member_of or []):
            ids.setdefault(business.id, None)
        return list(ids)

    async def _slot_events(self, sources: _Sources, user_id: str, role: ViewerRole, window: TimeWindow) -> List[CalendarEvent]:
        business_ids = await self._business_ids(sources, user_id)
        per_business = await asyncio.gather(
            *[self._business_slot_events(sources, business_id, user_id, role, window) for business_id in business_ids]
        )
        return [event for events in per_business for event in events]

    async def _business_slot_events(
        self, sources: _Sources, business_id: str, user_id: str, role: ViewerRole, window: TimeWindow
    ) -> List[CalendarEvent]:
        clinics = await sources.fetch(f"clinics:{business_id}", self.business_repo.list_clinics(business_id))
        if not clinics:
            return []
        per_clinic = await asyncio.gather(
            *[self._clinic_slot_events(sources, clinic, user_id, role, window) for clinic in clinics]
        )
        return [event for events in per_clinic for event in events]

    async def _clinic_slot_events(
        self, sources: _Sources, clinic: ClinicDto, user_id: str, role: ViewerRole, window: TimeWindow
    ) -> List[CalendarEvent]:
        records = await sources.fetch(
            f"slots:{clinic.business_id}/{clinic.id}",
            self.business_repo.list_slot_records(clinic.business_id, clinic.id, window.start, window.end),
        )
        events = []
        for record in records or []:
            event = slot_record_event(record, clinic.title or clinic.id, user_id, role)
            if event is not None:
                events.append(event)
        return events

    async def _appointment_events(self, sources: _Sources, user_id: str, role: ViewerRole, window: TimeWindow) -> List[CalendarEvent]:
        as_patient: Optional[List[AppointmentDto]] = None
        as_clinician: Optional[List[AppointmentDto]] = None
        lookups = []
        if _wants_patient(role):
            lookups.append(sources.fetch("appointments:patient", self.appointments_repo.list_for_patient(user_id, window.start)))
        if _wants_clinician(role):
            lookups.append(sources.fetch("appointments:clinician", self.appointments_repo.list_for_clinician(user_id, window.start)))
        results = await asyncio.gather(*lookups)
        if _wants_patient(role):
            as_patient = results[0]
        if _wants_clinician(role):
            as_clinician = results[-1]

        # the same appointment comes back from both queries when the user booked themselves
        roles: Dict[str, ViewerRole] = {}
        by_id: Dict[str, AppointmentDto] = {}
        for appointment in as_patient or []:
            by_id[appointment.id] = appointment
            roles[appointment.id] = ViewerRole.PATIENT
        for appointment in as_clinician or []:
            by_id[appointment.id] = appointment
            roles[appointment.id] = ViewerRole.BOTH if appointment.id in roles else ViewerRole.CLINICIAN

        return [
            appointment_event(appointment, roles[appointment_id])
            for appointment_id, appointment in by_id.items()
            if appointment.status != AppointmentStatus.CANCELLED
        ]

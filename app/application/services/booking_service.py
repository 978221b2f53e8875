import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .availability_service import Slot
from ..ports.appointments_repo import AppointmentDto, AppointmentRepository, AppointmentStatus
from ..ports.audit_logger import AuditLogger
from ..ports.businesses_repo import BusinessRepository, SlotRecordDto
from ...exceptions import (
    AuthenticationRequired,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    SlotUnavailable,
    TransientIOError,
)

logger = logging.getLogger(__name__)

# status -> statuses it may move to
TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.BOOKED, AppointmentStatus.CANCELLED},
    AppointmentStatus.BOOKED: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}

# transitions only the clinician may make
CLINICIAN_ONLY = {AppointmentStatus.BOOKED, AppointmentStatus.COMPLETED}


@dataclass
class BookingService:
    appointments_repo: AppointmentRepository
    business_repo: BusinessRepository
    audit: Optional[AuditLogger] = None
    timeout_seconds: Optional[float] = None

    async def _call(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise TransientIOError("Storage call timed out")

    def _audit(self, action: str, user_id: Optional[str], target_id: Optional[str], success: bool = True, **details) -> None:
        if self.audit is not None:
            self.audit.log(action, user_id, target_id=target_id, success=success, details=details)

    async def reserve(self, slot: Slot, user_id: Optional[str], reason: str = "") -> AppointmentDto:
        if not user_id:
            raise AuthenticationRequired("Sign in to book an appointment")
        if not slot.available:
            self._audit("reserve", user_id, slot.clinic_id, success=False, start=slot.start.isoformat(), cause="full")
            raise SlotUnavailable()
        if not slot.business_id or not slot.clinic_id:
            raise NotFound("Slot is not attached to a clinic")

        business = await self._call(self.business_repo.get_business(slot.business_id))
        if not business:
            raise NotFound(f"Business {slot.business_id} not found")

        try:
            appointment = await self._call(self.appointments_repo.reserve_slot(
                business_id=business.id,
                clinic_id=slot.clinic_id,
                clinician_id=business.owner_id,
                patient_id=user_id,
                start=slot.start,
                end=slot.end,
                capacity=slot.capacity,
                reason=reason.strip(),
            ))
        except SlotUnavailable:
            self._audit("reserve", user_id, slot.clinic_id, success=False, start=slot.start.isoformat(), cause="conflict")
            raise

        logger.info(f"Reserved {slot.start.isoformat()} at clinic {slot.clinic_id} for user {user_id}")
        self._audit("reserve", user_id, appointment.id, clinic_id=slot.clinic_id, start=slot.start.isoformat())
        return appointment

    async def cancel(self, appointment: AppointmentDto, user_id: Optional[str]) -> AppointmentDto:
        if not user_id:
            raise AuthenticationRequired()
        if user_id not in (appointment.patient_id, appointment.clinician_id):
            self._audit("cancel", user_id, appointment.id, success=False)
            raise PermissionDenied("Only the patient or the clinician can cancel this appointment")
        if appointment.status == AppointmentStatus.CANCELLED:
            return appointment
        if appointment.status == AppointmentStatus.COMPLETED:
            raise InvalidTransition("Cannot cancel completed appointment")

        updated = await self._call(
            self.appointments_repo.update_status(appointment.id, AppointmentStatus.CANCELLED)
        )
        self._audit("cancel", user_id, appointment.id)
        return updated

    async def cancel_by_id(self, appointment_id: str, user_id: Optional[str]) -> AppointmentDto:
        if not user_id:
            raise AuthenticationRequired()
        appointment = await self._call(self.appointments_repo.get_by_id(appointment_id))
        if not appointment:
            raise NotFound("Appointment not found")
        return await self.cancel(appointment, user_id)

    async def update_status(self, appointment_id: str, status: AppointmentStatus, user_id: Optional[str]) -> AppointmentDto:
        if not user_id:
            raise AuthenticationRequired()
        appointment = await self._call(self.appointments_repo.get_by_id(appointment_id))
        if not appointment:
            raise NotFound("Appointment not found")

        if status == AppointmentStatus.CANCELLED:
            return await self.cancel(appointment, user_id)

        if user_id not in (appointment.patient_id, appointment.clinician_id):
            self._audit("status", user_id, appointment_id, success=False, status=status.value)
            raise PermissionDenied("Only the patient or the clinician can change this appointment")
        if status in CLINICIAN_ONLY and user_id != appointment.clinician_id:
            raise PermissionDenied("Only the clinician can change this appointment's status")
        if status not in TRANSITIONS[appointment.status]:
            raise InvalidTransition(
                f"Cannot move appointment from {appointment.status.value} to {status.value}"
            )

        updated = await self._call(self.appointments_repo.update_status(appointment_id, status))
        self._audit("status", user_id, appointment_id, status=status.value)
        return updated

    async def join_slot_record(self, business_id: str, clinic_id: str, slot_id: str, user_id: Optional[str]) -> SlotRecordDto:
        if not user_id:
            raise AuthenticationRequired("Sign in to book an appointment")
        record = await self._call(self.business_repo.join_slot_record(business_id, clinic_id, slot_id, user_id))
        self._audit("join_slot", user_id, slot_id, clinic_id=clinic_id)
        return record

    async def leave_slot_record(
        self,
        business_id: str,
        clinic_id: str,
        slot_id: str,
        user_id: Optional[str],
        patient_id: Optional[str] = None,
    ) -> SlotRecordDto:
        """Remove ``patient_id`` (default: the caller) from a slot record's booked list."""
        if not user_id:
            raise AuthenticationRequired()
        target = patient_id or user_id
        record = await self._call(self.business_repo.get_slot_record(business_id, clinic_id, slot_id))
        if not record:
            raise NotFound("Slot not found")
        if user_id != target and user_id != record.clinician_id:
            raise PermissionDenied("Only the booked patient or the clinician can release this place")
        if target not in record.booked:
            raise NotFound("No booking for this patient on the slot")

        updated = await self._call(self.business_repo.leave_slot_record(business_id, clinic_id, slot_id, target))
        self._audit("leave_slot", user_id, slot_id, clinic_id=clinic_id, patient_id=target)
        return updated

"""Mapping between Firestore documents and the scheduling DTOs.

Field names are those the mobile app writes: businesses carry ``owner_id``
and ``members``; slot records ``clinician_id`` and ``booked``; appointments
use camelCase (``userId``, ``clinicianId``, ``businessId`` ...).
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from ....application.ports.appointments_repo import AppointmentDto, AppointmentStatus
from ....application.ports.businesses_repo import BusinessDto, ClinicDto, SlotRecordDto

BUSINESSES = "businesses"
CLINICS = "clinics"
SLOTS = "slots"
APPOINTMENTS = "appointments"

# appointment DTO attribute -> document field
APPOINTMENT_FIELDS = {
    "patient_id": "userId",
    "clinician_id": "clinicianId",
    "business_id": "businessId",
    "clinic_id": "clinicId",
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def business_from_doc(doc_id: str, data: Dict[str, Any]) -> BusinessDto:
    members = data.get("members") or []
    return BusinessDto(
        id=doc_id,
        owner_id=data.get("owner_id", ""),
        member_ids=list(members) if isinstance(members, list) else [],
        status=data.get("status", "active"),
    )


def clinic_from_doc(business_id: str, doc_id: str, data: Dict[str, Any], default_capacity: int, default_slot_minutes: int) -> ClinicDto:
    return ClinicDto(
        id=doc_id,
        business_id=business_id,
        title=data.get("title") or doc_id,
        open_hour=data.get("open_hour"),
        close_hour=data.get("close_hour"),
        slot_minutes=data.get("slot_minutes") or default_slot_minutes,
        capacity=data.get("capacity") or default_capacity,
        timezone=data.get("timezone") or "UTC",
    )


def slot_record_from_doc(business_id: str, clinic_id: str, doc_id: str, data: Dict[str, Any], default_capacity: int) -> SlotRecordDto:
    start = _as_utc(data["start"])
    booked = data.get("booked") or []
    return SlotRecordDto(
        id=doc_id,
        business_id=business_id,
        clinic_id=clinic_id,
        start=start,
        end=_as_utc(data.get("end")) or start + timedelta(hours=1),
        status=data.get("status") or "open",
        clinician_id=data.get("clinician_id") or "",
        booked=list(booked) if isinstance(booked, list) else [],
        capacity=data.get("capacity") or default_capacity,
    )


def _status(value: Optional[str]) -> AppointmentStatus:
    try:
        return AppointmentStatus(value)
    except ValueError:
        return AppointmentStatus.PENDING


def appointment_from_doc(doc_id: str, data: Dict[str, Any]) -> AppointmentDto:
    start = _as_utc(data["start"])
    created_at = _as_utc(data.get("createdAt")) or start
    return AppointmentDto(
        id=doc_id,
        patient_id=data.get("userId", ""),
        clinician_id=data.get("clinicianId", ""),
        business_id=data.get("businessId", ""),
        clinic_id=data.get("clinicId"),
        start=start,
        end=_as_utc(data.get("end")) or start + timedelta(hours=1),
        status=_status(data.get("status")),
        reason=data.get("reason", ""),
        created_at=created_at,
        updated_at=_as_utc(data.get("updatedAt")),
    )


def appointment_to_doc(appointment: AppointmentDto) -> Dict[str, Any]:
    doc = {
        "userId": appointment.patient_id,
        "clinicianId": appointment.clinician_id,
        "businessId": appointment.business_id,
        "start": appointment.start,
        "end": appointment.end,
        "status": appointment.status.value,
        "reason": appointment.reason,
        "createdAt": appointment.created_at,
        "updatedAt": appointment.updated_at or appointment.created_at,
    }
    if appointment.clinic_id:
        doc["clinicId"] = appointment.clinic_id
    return doc

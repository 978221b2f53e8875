from datetime import date
import logging

from fastapi import APIRouter, Depends, Query
from typing import Optional

from ..application.services.availability_service import AvailabilityService, ViewerRole
from ..application.services.booking_service import BookingService
from ..dependencies import get_availability_service, get_booking_service, get_current_user, get_optional_user
from ..schemas.appointments.appointment import AppointmentResponse, ReservationRequest
from ..schemas.scheduling.slots import AvailabilityResponse, SlotRecordResponse, SlotResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/businesses/{business_id}/clinics/{clinic_id}", tags=["Slots"])


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    business_id: str,
    clinic_id: str,
    day: date,
    role: ViewerRole = ViewerRole.PATIENT,
    current_user: Optional[str] = Depends(get_optional_user),
    availability: AvailabilityService = Depends(get_availability_service),
):
    slots = await availability.day_availability(business_id, clinic_id, day, user_id=current_user, role=role)
    return AvailabilityResponse(
        business_id=business_id,
        clinic_id=clinic_id,
        day=day.isoformat(),
        slots=[SlotResponse.model_validate(s) for s in slots],
    )


@router.post("/reservations", response_model=AppointmentResponse, status_code=201)
async def reserve_slot(
    business_id: str,
    clinic_id: str,
    reservation: ReservationRequest,
    current_user: str = Depends(get_current_user),
    availability: AvailabilityService = Depends(get_availability_service),
    booking: BookingService = Depends(get_booking_service),
):
    slot = await availability.find_slot(business_id, clinic_id, reservation.start, user_id=current_user)
    appointment = await booking.reserve(slot, current_user, reason=reservation.reason)
    logger.info(f"User {current_user} reserved {clinic_id} at {slot.start.isoformat()}")
    return AppointmentResponse.model_validate(appointment)


@router.post("/slots/{slot_id}/booking", response_model=SlotRecordResponse)
async def join_slot(
    business_id: str,
    clinic_id: str,
    slot_id: str,
    current_user: str = Depends(get_current_user),
    booking: BookingService = Depends(get_booking_service),
):
    record = await booking.join_slot_record(business_id, clinic_id, slot_id, current_user)
    return SlotRecordResponse.model_validate(record)


@router.delete("/slots/{slot_id}/booking", response_model=SlotRecordResponse)
async def leave_slot(
    business_id: str,
    clinic_id: str,
    slot_id: str,
    patient_id: Optional[str] = Query(default=None, description="Patient to remove; defaults to the caller"),
    current_user: str = Depends(get_current_user),
    booking: BookingService = Depends(get_booking_service),
):
    record = await booking.leave_slot_record(business_id, clinic_id, slot_id, current_user, patient_id=patient_id)
    return SlotRecordResponse.model_validate(record)

import logging

from fastapi import APIRouter, Depends

from ..application.services.booking_service import BookingService
from ..dependencies import get_booking_service, get_current_user
from ..schemas.appointments.appointment import AppointmentResponse, StatusUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    current_user: str = Depends(get_current_user),
    booking: BookingService = Depends(get_booking_service),
):
    appointment = await booking.cancel_by_id(appointment_id, current_user)
    return AppointmentResponse.model_validate(appointment)


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: str,
    update: StatusUpdateRequest,
    current_user: str = Depends(get_current_user),
    booking: BookingService = Depends(get_booking_service),
):
    appointment = await booking.update_status(appointment_id, update.status, current_user)
    logger.info(f"Appointment {appointment_id} moved to {appointment.status.value} by {current_user}")
    return AppointmentResponse.model_validate(appointment)

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..application.services.availability_service import ViewerRole
from ..application.services.calendar_service import CalendarResult, CalendarService
from ..dependencies import get_calendar_service, get_current_user
from ..schemas.calendar.calendar import CalendarEventResponse, CalendarResponse, SourceFailureResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["Calendar"])


def to_calendar_response(result: CalendarResult) -> CalendarResponse:
    return CalendarResponse(
        events=[CalendarEventResponse.model_validate(e) for e in result.events],
        failures=[SourceFailureResponse.model_validate(f) for f in result.failures],
        partial=result.partial,
        error=result.error,
    )


@router.get("", response_model=CalendarResponse)
async def get_calendar(
    role: ViewerRole = ViewerRole.BOTH,
    current_user: str = Depends(get_current_user),
    calendar: CalendarService = Depends(get_calendar_service),
):
    result = await calendar.aggregate(current_user, role)
    return to_calendar_response(result)


@router.get("/stream")
async def stream_calendar(
    role: ViewerRole = ViewerRole.BOTH,
    current_user: str = Depends(get_current_user),
    calendar: CalendarService = Depends(get_calendar_service),
):
    """
    Server-sent events: the calendar now, then again after every change to
    the caller's appointments
    """

    async def generate_events():
        updates = calendar.watch(current_user, role)
        try:
            async for result in updates:
                yield f"event: calendar\ndata: {to_calendar_response(result).model_dump_json()}\n\n"
        finally:
            await updates.aclose()
            logger.debug(f"Calendar stream closed for user {current_user}")

    return StreamingResponse(
        generate_events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

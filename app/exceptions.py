from fastapi import Request
from fastapi.responses import JSONResponse


class SchedulingError(Exception):
    """Base class for errors raised by the scheduling engine."""

    status_code: int = 400
    default_message: str = "Scheduling request failed"

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationRequired(SchedulingError):
    status_code = 401
    default_message = "Authentication required"


class PermissionDenied(SchedulingError):
    status_code = 403
    default_message = "You are not allowed to modify this booking"


class NotFound(SchedulingError):
    status_code = 404
    default_message = "Not found"


class SlotUnavailable(SchedulingError):
    status_code = 409
    default_message = "This time slot is no longer available"


class InvalidTransition(SchedulingError):
    status_code = 409
    default_message = "Invalid appointment status transition"


class TransientIOError(SchedulingError):
    status_code = 503
    default_message = "Storage temporarily unavailable"


def create_error_response(error_message: str, status_code: int = 400) -> dict:
    """Create a standardized error response"""
    return {
        "success": False,
        "data": None,
        "error": error_message
    }


async def scheduling_exception_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Render engine errors in the standard envelope"""
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.message, exc.status_code)
    )

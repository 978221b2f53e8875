# Routers package
from . import slots_router
from . import appointments_router
from . import calendar_router

__all__ = [
    "slots_router",
    "appointments_router",
    "calendar_router",
]

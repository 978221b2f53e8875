# Models package (re-export feature modules for stable imports)
from .businesses.business import Business, BusinessMember
from .businesses.clinic import Clinic, ClinicSlot
from .scheduling.appointment import Appointment

__all__ = [
    "Business",
    "BusinessMember",
    "Clinic",
    "ClinicSlot",
    "Appointment",
]

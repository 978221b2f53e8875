# Schemas package (re-export feature modules for stable imports)
from .appointments.appointment import *
from .scheduling.slots import *
from .calendar.calendar import *
from .common.common import *

"""API routers."""

from rescheduler.routers.internal import router as internal_router
from rescheduler.routers.reschedule import router as reschedule_router

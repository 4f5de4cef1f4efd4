"""API routes."""

from .applications import router as applications_router
from .jobs import router as jobs_router
from .messages import router as messages_router
from .notifications import router as notifications_router
from .realtime import router as realtime_router

__all__ = [
    "jobs_router",
    "applications_router",
    "messages_router",
    "notifications_router",
    "realtime_router",
]

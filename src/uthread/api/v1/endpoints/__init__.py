# src/uthread/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .messages import router as messages_router
from .notifications import router as notifications_router
from .push import router as push_router
from .realtime import router as realtime_router

__all__ = [
    "messages_router",
    "notifications_router",
    "push_router",
    "realtime_router",
]

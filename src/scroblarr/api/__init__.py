"""API module."""

from .events import router as events_router
from .health import router as health_router
from .history import router as history_router

__all__ = ["events_router", "health_router", "history_router"]

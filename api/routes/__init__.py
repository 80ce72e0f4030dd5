"""API route modules."""

from .health_routes import router as health_router
from .streaks_routes import router as streaks_router
from .streaks_routes import streak_error_handler, streak_timeout_handler

__all__ = [
    "health_router",
    "streak_error_handler",
    "streak_timeout_handler",
    "streaks_router",
]

"""API endpoint modules for version 1."""

from .csrf import router as csrf_router
from .games import router as games_router
from .session_action import router as session_action_router
from .system import router as system_router

__all__ = [
    "csrf_router",
    "session_action_router",
    "games_router",
    "system_router",
]

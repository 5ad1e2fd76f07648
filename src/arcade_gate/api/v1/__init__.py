"""Version 1 API endpoints."""

from .endpoints import csrf_router, games_router, session_action_router, system_router

__all__ = [
    "csrf_router",
    "session_action_router",
    "games_router",
    "system_router",
]

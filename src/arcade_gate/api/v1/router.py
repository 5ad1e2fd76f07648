"""Versioned API router wiring for v1.

This module composes the version 1 API surface by including the sub-routers
that define their own endpoints. It contains no endpoint definitions.
"""
from __future__ import annotations

from typing import Final

from fastapi import APIRouter

from .endpoints import csrf_router, games_router, session_action_router, system_router

api_v1: Final[APIRouter] = APIRouter()
api_v1.include_router(csrf_router)
api_v1.include_router(session_action_router)
api_v1.include_router(games_router)
api_v1.include_router(system_router)

__all__ = ["api_v1"]

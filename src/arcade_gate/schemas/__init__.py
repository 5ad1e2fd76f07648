"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .game import GameResponse, LatestGameResponse, TicketsResponse
from .session import CsrfTokenResponse, SessionActionRequest, SessionActionResponse

__all__ = [
    "CsrfTokenResponse", "SessionActionRequest", "SessionActionResponse",
    "GameResponse", "LatestGameResponse", "TicketsResponse",
]

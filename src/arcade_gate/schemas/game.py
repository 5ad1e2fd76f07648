"""Read-only views of ledger state."""

from pydantic import BaseModel, ConfigDict, Field


class GameResponse(BaseModel):
    """A game record as stored by the contract."""

    model_config = ConfigDict(populate_by_name=True)

    game_id: int = Field(..., alias="gameId")
    end_time: int = Field(..., alias="endTime")
    high_score: int = Field(..., alias="highScore")
    leader: str
    pot: int = Field(..., description="Pot in wei")
    pot_history: list[int] = Field(default_factory=list, alias="potHistory")


class LatestGameResponse(BaseModel):
    """Identifier of the most recently created game."""

    model_config = ConfigDict(populate_by_name=True)

    game_id: int = Field(..., alias="gameId")


class TicketsResponse(BaseModel):
    """Ticket balance of a player."""

    address: str
    tickets: int

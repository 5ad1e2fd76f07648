"""Read-only ledger endpoints for game and ticket state."""

from fastapi import APIRouter, HTTPException, status

from arcade_gate.api.v1.dependencies import ServicesDep
from arcade_gate.core.errors import LedgerError
from arcade_gate.core.security import normalize_address
from arcade_gate.schemas.game import GameResponse, LatestGameResponse, TicketsResponse

router = APIRouter(tags=["games"])


def _ledger_unavailable(err: LedgerError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=err.message)


@router.get("/games/latest", response_model=LatestGameResponse, response_model_by_alias=True)
async def get_latest_game(services: ServicesDep) -> LatestGameResponse:
    """Return the id of the most recently created game."""
    try:
        game_id = await services.ledger.get_latest_game_id()
    except LedgerError as err:
        raise _ledger_unavailable(err) from err
    return LatestGameResponse(game_id=game_id)


@router.get("/games/{game_id}", response_model=GameResponse, response_model_by_alias=True)
async def get_game(game_id: int, services: ServicesDep) -> GameResponse:
    """Return the ledger's record of a game, including its high score and pot."""
    if game_id < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid game id")
    try:
        game = await services.ledger.get_game(game_id)
    except LedgerError as err:
        raise _ledger_unavailable(err) from err
    return GameResponse(
        game_id=game.game_id,
        end_time=game.end_time,
        high_score=game.high_score,
        leader=game.leader,
        pot=game.pot,
        pot_history=list(game.pot_history),
    )


@router.get("/tickets/{address}", response_model=TicketsResponse)
async def get_tickets(address: str, services: ServicesDep) -> TicketsResponse:
    """Return the ticket balance of a player address."""
    try:
        checksum = normalize_address(address)
    except ValueError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid address") from err
    try:
        tickets = await services.ledger.get_tickets(checksum)
    except LedgerError as err:
        raise _ledger_unavailable(err) from err
    return TicketsResponse(address=checksum, tickets=tickets)

"""The session action endpoint: create, start, end and withdraw."""

from typing import Annotated
from urllib.parse import unquote

from fastapi import APIRouter, Cookie, Header
from fastapi.responses import JSONResponse

from arcade_gate.api.v1.dependencies import ServicesDep
from arcade_gate.schemas.session import SessionActionRequest, SessionActionResponse
from arcade_gate.services.orchestrator import ActionRequest

router = APIRouter(tags=["session"])


@router.post("/session-action", response_model=SessionActionResponse)
async def session_action(
    payload: SessionActionRequest,
    services: ServicesDep,
    csrf_token: Annotated[str | None, Header(alias="X-CSRF-Token")] = None,
    app_origin: Annotated[str | None, Header(alias="X-App-Origin")] = None,
    session_id: Annotated[str | None, Cookie(alias="sessionId")] = None,
    game_sig: Annotated[str | None, Cookie(alias="gameSig")] = None,
) -> JSONResponse:
    """Run one game action through the validation pipeline.

    Rejections are answered with ``{status: "error", message, reason}`` and
    the matching status code; throttled calls also carry ``Retry-After``.
    """
    request = ActionRequest(
        action=payload.action,
        session_id=session_id,
        csrf_token=csrf_token,
        origin=app_origin,
        game_id=payload.game_id,
        address=payload.address,
        score=payload.score,
        recaptcha_token=payload.recaptcha_token,
        signature_cookie=unquote(game_sig) if game_sig else None,
        game_kind=payload.game,
        stats=payload.stats,
        telemetry=payload.telemetry,
    )
    outcome = await services.orchestrator.execute(request)

    headers = None
    if outcome.retry_after is not None:
        headers = {"Retry-After": str(int(outcome.retry_after))}
    return JSONResponse(status_code=outcome.status_code, content=outcome.body, headers=headers)

"""Session bootstrap: the CSRF token endpoint."""

from typing import Annotated

from fastapi import APIRouter, Cookie, Header, HTTPException, Response, status

from arcade_gate.api.v1.dependencies import ServicesDep
from arcade_gate.schemas.session import CsrfTokenResponse

SESSION_COOKIE = "sessionId"

router = APIRouter(tags=["session"])


@router.get("/csrf", response_model=CsrfTokenResponse)
async def issue_csrf_token(
    response: Response,
    services: ServicesDep,
    session_id: Annotated[str | None, Cookie(alias=SESSION_COOKIE)] = None,
    app_origin: Annotated[str | None, Header(alias="X-App-Origin")] = None,
) -> CsrfTokenResponse:
    """Issue an anti-forgery token for the caller's session.

    A session is created when the request carries no (or an unknown)
    ``sessionId`` cookie. The token is only valid together with that cookie.
    """
    config = services.config
    if config.app_origin and app_origin != config.app_origin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid application origin",
        )

    record, _ = await services.sessions.ensure(session_id)
    token = await services.csrf.issue(record.session_id)
    response.set_cookie(
        SESSION_COOKIE,
        record.session_id,
        max_age=config.session_ttl_seconds,
        path="/",
        httponly=True,
        secure=config.session_cookie_secure,
        samesite="strict",
    )
    return CsrfTokenResponse(token=token)

"""Session action request/response schemas."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Parsing ceiling for the event log; the engine enforces the configured limit
MAX_TELEMETRY_EVENTS = 10_000


class CsrfTokenResponse(BaseModel):
    """Anti-forgery token bound to the caller's session cookie."""

    token: str


class SessionActionRequest(BaseModel):
    """Body of ``POST /session-action``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: str = Field(..., min_length=1, description="create, start, end or withdraw")
    game_id: int | None = Field(None, ge=0, alias="gameId")
    address: str | None = Field(None, description="Player wallet address")
    score: int | None = Field(None, description="Claimed score for the end action")
    recaptcha_token: str | None = Field(
        None,
        validation_alias=AliasChoices("recaptchaToken", "recaptchaTokenStart"),
    )
    game: str | None = Field(None, description="Mini-game kind: fly, jump or shoot")
    stats: dict[str, Any] | None = Field(None, description="Aggregate run statistics")
    telemetry: list[Any] | None = Field(
        None,
        max_length=MAX_TELEMETRY_EVENTS,
        description="Bounded client event log",
    )


class SessionActionResponse(BaseModel):
    """Structured success or rejection of a session action."""

    model_config = ConfigDict(populate_by_name=True)

    status: str
    tx_hash: str | None = Field(None, alias="txHash")
    is_high_score: bool | None = Field(None, alias="isHighScore")
    high_score: int | None = Field(None, alias="highScore")
    message: str | None = None
    reason: str | None = None
    retry_after: int | None = Field(None, alias="retryAfter")

"""Session action pipeline: the single entry point for game actions.

Each action runs a fixed sequence of gates before anything reaches the
ledger:

- ``create``: origin/CSRF, rate limit, ``createGame``
- ``start``: origin/CSRF, rate limit, CAPTCHA, wallet signature, ``startGame``,
  then the server records the run's start time
- ``end``: origin/CSRF, rate limit, high-score short circuit, plausibility
  engine, ``endGame``
- ``withdraw``: origin/CSRF, ``winnerWithdraw``

The result is always an ``ActionOutcome``: a structured success or a
structured rejection, never a partial state.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from arcade_gate.core.errors import (
    AuthorizationError,
    BadRequestError,
    GateError,
    LedgerError,
    PlausibilityError,
    ThrottledError,
)
from arcade_gate.core.logging import current_session_id
from arcade_gate.core.security import normalize_address
from arcade_gate.services.captcha import HumanVerifier
from arcade_gate.services.identity import IdentityBinder
from arcade_gate.services.ledger import LedgerFunction, LedgerGateway
from arcade_gate.services.plausibility import ScoreClaim, ScorePlausibilityEngine
from arcade_gate.services.rate_limit import RateLimiter
from arcade_gate.services.runs import GameRunStore
from arcade_gate.services.sessions import CsrfTokenStore, SessionRegistry

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_INTERNAL_SERVER_ERROR = 500


class SessionAction(str, Enum):
    """Actions a browser session may request."""

    CREATE = "create"
    START = "start"
    END = "end"
    WITHDRAW = "withdraw"


# Names used by older clients
ACTION_ALIASES: dict[str, SessionAction] = {
    "create-game": SessionAction.CREATE,
    "start-game": SessionAction.START,
    "end-game": SessionAction.END,
    "winner-withdraw": SessionAction.WITHDRAW,
}


def parse_action(raw: str | None) -> SessionAction:
    if not raw:
        raise BadRequestError("Missing action")
    if raw in ACTION_ALIASES:
        return ACTION_ALIASES[raw]
    try:
        return SessionAction(raw)
    except ValueError as err:
        raise BadRequestError("Invalid action", detail=f"unknown action {raw!r}") from err


@dataclass(frozen=True)
class ActionRequest:
    """Transport-independent view of one session action call."""

    action: str | None
    session_id: str | None
    csrf_token: str | None
    origin: str | None = None
    game_id: int | None = None
    address: str | None = None
    score: int | None = None
    recaptcha_token: str | None = None
    signature_cookie: str | None = None
    game_kind: str | None = None
    stats: Mapping[str, Any] | None = None
    telemetry: Sequence[Any] | None = None


@dataclass(frozen=True)
class ActionOutcome:
    """Uniform result returned to the transport layer."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)
    retry_after: float | None = None

    @property
    def ok(self) -> bool:
        return self.status_code == HTTP_OK


class SessionActionOrchestrator:
    """Sequences CSRF, throttling, identity, anti-cheat and ledger writes."""

    def __init__(
        self,
        *,
        csrf: CsrfTokenStore,
        sessions: SessionRegistry,
        rate_limiter: RateLimiter,
        verifier: HumanVerifier,
        identity: IdentityBinder,
        engine: ScorePlausibilityEngine,
        ledger: LedgerGateway,
        runs: GameRunStore,
        allowed_origin: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.csrf = csrf
        self.sessions = sessions
        self.rate_limiter = rate_limiter
        self.verifier = verifier
        self.identity = identity
        self.engine = engine
        self.ledger = ledger
        self.runs = runs
        self.allowed_origin = allowed_origin
        self._clock = clock

    async def execute(self, request: ActionRequest) -> ActionOutcome:
        """Run the pipeline for ``request`` and never raise."""
        context = current_session_id.set(request.session_id or "-")
        try:
            body = await self._dispatch(request)
            return ActionOutcome(status_code=HTTP_OK, body={"status": "success", **body})
        except ThrottledError as err:
            retry_after = math.ceil(err.retry_after)
            return ActionOutcome(
                status_code=err.status_code,
                body=self._error_body(err, retryAfter=retry_after),
                retry_after=retry_after,
            )
        except GateError as err:
            log = logger.error if err.status_code >= HTTP_INTERNAL_SERVER_ERROR else logger.warning
            log("%s rejected (%s): %s", request.action, err.reason, err.detail)
            return ActionOutcome(status_code=err.status_code, body=self._error_body(err))
        except Exception:
            logger.exception("Unhandled failure in %s", request.action)
            return ActionOutcome(
                status_code=HTTP_INTERNAL_SERVER_ERROR,
                body={"status": "error", "message": "Internal error", "reason": "internal"},
            )
        finally:
            current_session_id.reset(context)

    @staticmethod
    def _error_body(err: GateError, **extra: Any) -> dict[str, Any]:
        return {"status": "error", "message": err.message, "reason": err.reason, **extra}

    async def _dispatch(self, request: ActionRequest) -> dict[str, Any]:
        session_id = await self._authorize(request)
        action = parse_action(request.action)
        if action is SessionAction.CREATE:
            return await self._create(session_id)
        if action is SessionAction.START:
            return await self._start(session_id, request)
        if action is SessionAction.END:
            return await self._end(session_id, request)
        return await self._withdraw(request)

    async def _authorize(self, request: ActionRequest) -> str:
        if self.allowed_origin and request.origin != self.allowed_origin:
            raise AuthorizationError(
                "Invalid application origin",
                detail=f"origin {request.origin!r}",
                reason="origin",
            )
        session_id = request.session_id
        if not session_id or not await self.csrf.validate(session_id, request.csrf_token):
            raise AuthorizationError("Invalid or missing CSRF token. Press f5 to refresh")
        return session_id

    # --- Actions -----------------------------------------------------------------
    async def _create(self, session_id: str) -> dict[str, Any]:
        ticket = await self.rate_limiter.check_and_record(session_id, SessionAction.CREATE.value)
        try:
            result = await self.ledger.submit(LedgerFunction.CREATE_GAME)
        except LedgerError:
            await self.rate_limiter.release(ticket)
            raise
        return {"txHash": result.tx_hash}

    async def _start(self, session_id: str, request: ActionRequest) -> dict[str, Any]:
        if request.game_id is None or not request.address:
            raise BadRequestError("Missing gameId or address")
        address = self._address(request.address)

        ticket = await self.rate_limiter.check_and_record(session_id, SessionAction.START.value)
        try:
            await self.verifier.verify(request.recaptcha_token)
            identity = self.identity.bind_and_verify(
                request.signature_cookie,
                address,
                session_id=session_id,
            )
            result = await self.ledger.submit(
                LedgerFunction.START_GAME,
                (request.game_id, identity.address),
            )
        except GateError:
            await self.rate_limiter.release(ticket)
            raise

        await self.runs.record_start(request.game_id, identity.address, session_id)
        await self.sessions.bind_address(session_id, identity.address)
        logger.info("Run started for %s in game %s", identity.address, request.game_id)
        return {"txHash": result.tx_hash}

    async def _end(self, session_id: str, request: ActionRequest) -> dict[str, Any]:
        if request.game_id is None or not request.address or request.score is None:
            raise BadRequestError("Missing gameId or address or score")
        if request.score < 0:
            raise BadRequestError("Invalid score")
        address = self._address(request.address)

        await self.rate_limiter.check_and_record(session_id, SessionAction.END.value)
        ended_at = self._clock()
        run = await self.runs.consume(request.game_id, address)

        try:
            high_score = await self.ledger.current_high_score(request.game_id)
        except LedgerError:
            if run is not None:
                await self.runs.restore(run)
            raise
        if request.score <= high_score:
            return {"isHighScore": False, "highScore": high_score}

        if run is None or run.session_id != session_id:
            raise PlausibilityError("run", "no server-recorded start for this session")

        claim = ScoreClaim(
            game_kind=self._game_kind(request),
            claimed_score=request.score,
            server_elapsed_ms=(ended_at - run.started_at) * 1000,
            stats=request.stats,
            telemetry=request.telemetry,
        )
        self.engine.evaluate(claim, high_score)

        try:
            result = await self.ledger.submit(
                LedgerFunction.END_GAME,
                (request.game_id, address, request.score),
            )
        except LedgerError:
            # Retried ends are compared against the ledger's own high score.
            await self.runs.restore(run)
            raise
        return {
            "txHash": result.tx_hash,
            "isHighScore": result.is_high_score,
            "highScore": request.score if result.is_high_score else high_score,
        }

    async def _withdraw(self, request: ActionRequest) -> dict[str, Any]:
        if request.game_id is None:
            raise BadRequestError("Missing gameId")
        result = await self.ledger.submit(LedgerFunction.WINNER_WITHDRAW, (request.game_id,))
        return {"txHash": result.tx_hash}

    # --- Helpers -----------------------------------------------------------------
    @staticmethod
    def _address(raw: str) -> str:
        try:
            return normalize_address(raw)
        except ValueError as err:
            raise BadRequestError("Invalid address", detail=str(err)) from err

    @staticmethod
    def _game_kind(request: ActionRequest) -> str:
        if request.game_kind:
            return request.game_kind
        if isinstance(request.stats, Mapping) and isinstance(request.stats.get("game"), str):
            return request.stats["game"]
        return ""

"""Server-recorded start times of game runs."""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass

from arcade_gate.services.store import StateStore


@dataclass(frozen=True)
class GameRun:
    """A started run awaiting its end action."""

    game_id: int
    address: str
    session_id: str
    started_at: float


class GameRunStore:
    """Keeps one pending run per ``(game, player)`` until it is consumed."""

    def __init__(
        self,
        store: StateStore,
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._clock = clock

    @staticmethod
    def _key(game_id: int, address: str) -> str:
        return f"run:{game_id}:{address.lower()}"

    async def record_start(self, game_id: int, address: str, session_id: str) -> GameRun:
        """Record the server time a run started; a later start supersedes it."""
        run = GameRun(
            game_id=game_id,
            address=address,
            session_id=session_id,
            started_at=self._clock(),
        )
        await self._store.set(self._key(game_id, address), json.dumps(asdict(run)), self._ttl)
        return run

    async def consume(self, game_id: int, address: str) -> GameRun | None:
        """Remove and return the pending run, if any."""
        raw = await self._store.pop(self._key(game_id, address))
        if raw is None:
            return None
        return GameRun(**json.loads(raw))

    async def restore(self, run: GameRun) -> None:
        """Put back a consumed run whose end action failed at the ledger."""
        key = self._key(run.game_id, run.address)
        await self._store.add(key, json.dumps(asdict(run)), self._ttl)

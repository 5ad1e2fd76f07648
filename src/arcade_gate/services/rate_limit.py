"""Per-session, per-action cooldown enforcement."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from arcade_gate.core.errors import ThrottledError
from arcade_gate.services.store import StateStore

logger = logging.getLogger(__name__)

# Attempts to re-read a record that expired between the add and the get
_MAX_RECORD_ATTEMPTS = 2


@dataclass(frozen=True)
class RateLimitTicket:
    """Proof that an invocation was recorded; used to release it again."""

    key: str
    stamp: str


def _format_wait(seconds: float) -> str:
    if seconds >= 60:
        minutes = math.ceil(seconds / 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    whole = max(1, math.ceil(seconds))
    return f"{whole} second{'s' if whole != 1 else ''}"


class RateLimiter:
    """Fixed-window limiter keyed by ``(session, action)``.

    The cooldown runs from the last successful record. Recording uses the
    store's atomic set-if-absent with the cooldown as TTL, so two concurrent
    duplicates cannot both pass and a rejected attempt never moves the window.
    """

    def __init__(
        self,
        store: StateStore,
        cooldowns: Mapping[str, float],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cooldowns = dict(cooldowns)
        self._clock = clock

    def cooldown(self, action: str) -> float:
        return float(self._cooldowns.get(action, 0))

    @staticmethod
    def _key(session_id: str, action: str) -> str:
        return f"ratelimit:{session_id}:{action}"

    async def check_and_record(
        self, session_id: str, action: str, now: float | None = None
    ) -> RateLimitTicket | None:
        """Record an invocation or raise ``ThrottledError``.

        Returns None when the action has no cooldown configured.
        """
        cooldown = self.cooldown(action)
        if cooldown <= 0:
            return None

        now = self._clock() if now is None else now
        key = self._key(session_id, action)
        stamp = f"{now:.6f}"

        for _ in range(_MAX_RECORD_ATTEMPTS):
            if await self._store.add(key, stamp, cooldown):
                return RateLimitTicket(key=key, stamp=stamp)
            last = await self._store.get(key)
            if last is None:
                continue
            remaining = max(cooldown - (now - float(last)), 0.001)
            logger.warning(
                "Rate limit hit for %s (%s); %.1fs remaining", action, session_id, remaining
            )
            raise ThrottledError(
                f"Rate limit exceeded. Try again in {_format_wait(remaining)}.",
                retry_after=remaining,
            )

        # The record kept expiring under us; treat the caller as throttled briefly.
        raise ThrottledError("Rate limit exceeded. Try again shortly.", retry_after=1.0)

    async def release(self, ticket: RateLimitTicket | None) -> None:
        """Forget a recorded invocation whose guarded action did not happen."""
        if ticket is None:
            return
        await self._store.delete_if_equals(ticket.key, ticket.stamp)

"""Cookie-identified browser sessions and their CSRF tokens."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass

from arcade_gate.core.security import generate_csrf_token, generate_session_id, tokens_equal
from arcade_gate.services.store import StateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionRecord:
    """Server-side view of a browser session."""

    session_id: str
    created_at: float
    address: str | None = None


class SessionRegistry:
    """Creates sessions on demand and binds verified wallet addresses to them."""

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
    def _key(session_id: str) -> str:
        return f"session:{session_id}"

    async def ensure(self, session_id: str | None) -> tuple[SessionRecord, bool]:
        """Return the session for ``session_id``, creating one if needed.

        Unknown or expired ids are superseded by a freshly generated id, so a
        client cannot choose its own session identifier.
        """
        if session_id:
            record = await self.get(session_id)
            if record is not None:
                return record, False

        record = SessionRecord(session_id=generate_session_id(), created_at=self._clock())
        await self._save(record)
        logger.info("Created session %s", record.session_id)
        return record, True

    async def get(self, session_id: str) -> SessionRecord | None:
        raw = await self._store.get(self._key(session_id))
        if raw is None:
            return None
        data = json.loads(raw)
        return SessionRecord(**data)

    async def bind_address(self, session_id: str, address: str) -> SessionRecord:
        """Record the wallet address proven by a valid signature."""
        current = await self.get(session_id)
        created_at = current.created_at if current else self._clock()
        record = SessionRecord(session_id=session_id, created_at=created_at, address=address)
        await self._save(record)
        return record

    async def _save(self, record: SessionRecord) -> None:
        await self._store.set(self._key(record.session_id), json.dumps(asdict(record)), self._ttl)


class CsrfTokenStore:
    """Issues and validates one anti-forgery token per session."""

    def __init__(self, store: StateStore, *, ttl_seconds: float, rotate_on_issue: bool = True) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._rotate = rotate_on_issue

    @staticmethod
    def _key(session_id: str) -> str:
        return f"csrf:{session_id}"

    async def issue(self, session_id: str) -> str:
        """Return the session's token, rotating it unless reuse is configured."""
        if not self._rotate:
            token = generate_csrf_token()
            if await self._store.add(self._key(session_id), token, self._ttl):
                return token
            existing = await self._store.get(self._key(session_id))
            if existing is not None:
                return existing

        token = generate_csrf_token()
        await self._store.set(self._key(session_id), token, self._ttl)
        return token

    async def validate(self, session_id: str | None, token: str | None) -> bool:
        """Return True only when ``token`` is the one stored for ``session_id``."""
        if not session_id or not token:
            return False
        expected = await self._store.get(self._key(session_id))
        if expected is None:
            return False
        return tokens_equal(expected, token)

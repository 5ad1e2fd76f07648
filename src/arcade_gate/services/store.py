"""Shared state storage for sessions, CSRF tokens, cooldowns and game runs."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from threading import Lock
from typing import Protocol

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

from arcade_gate.core.errors import GateError
from arcade_gate.core.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0

_DELETE_IF_EQUALS_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class StateStoreError(GateError):
    """Raised when the backing store cannot be reached."""

    status_code = 500
    reason = "store"


class StateStore(Protocol):
    """Concurrency-safe key/value store with per-key atomic operations."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None: ...

    async def add(self, key: str, value: str, ttl_seconds: float | None = None) -> bool: ...

    async def pop(self, key: str) -> str | None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_if_equals(self, key: str, value: str) -> bool: ...

    async def close(self) -> None: ...


class MemoryStateStore:
    """In-process store for single-worker deployments and tests.

    All mutations happen under one lock and never await while holding it, so
    ``add`` and ``pop`` are atomic with respect to concurrent requests.
    Expired entries are dropped when read, and writes sweep the whole table
    at most once per ``sweep_interval_seconds``.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float | None]] = {}
        self._lock = Lock()
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _live(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expiry = entry
        if expiry is not None and expiry <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    def _expiry(self, ttl_seconds: float | None) -> float | None:
        if ttl_seconds is None or ttl_seconds <= 0:
            return None
        return self._clock() + ttl_seconds

    def _maybe_sweep(self) -> None:
        now = self._clock()
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        expired = [
            key
            for key, (_, expiry) in self._entries.items()
            if expiry is not None and expiry <= now
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired entries", len(expired))

    async def get(self, key: str) -> str | None:
        with self._lock:
            return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        with self._lock:
            self._maybe_sweep()
            self._entries[key] = (value, self._expiry(ttl_seconds))

    async def add(self, key: str, value: str, ttl_seconds: float | None = None) -> bool:
        """Store ``value`` only if ``key`` is absent; return True when stored."""
        with self._lock:
            self._maybe_sweep()
            if self._live(key) is not None:
                return False
            self._entries[key] = (value, self._expiry(ttl_seconds))
            return True

    async def pop(self, key: str) -> str | None:
        with self._lock:
            value = self._live(key)
            self._entries.pop(key, None)
            return value

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        with self._lock:
            if self._live(key) != value:
                return False
            self._entries.pop(key, None)
            return True

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisStateStore:
    """Redis-backed store for multi-worker deployments."""

    def __init__(self, client: redis_asyncio.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisStateStore:
        return cls(redis_asyncio.from_url(url, decode_responses=True))

    @staticmethod
    def _px(ttl_seconds: float | None) -> int | None:
        if ttl_seconds is None or ttl_seconds <= 0:
            return None
        return max(1, int(ttl_seconds * 1000))

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as err:
            raise StateStoreError("State store unavailable", detail=str(err)) from err

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        try:
            await self._redis.set(key, value, px=self._px(ttl_seconds))
        except RedisError as err:
            raise StateStoreError("State store unavailable", detail=str(err)) from err

    async def add(self, key: str, value: str, ttl_seconds: float | None = None) -> bool:
        try:
            return bool(await self._redis.set(key, value, nx=True, px=self._px(ttl_seconds)))
        except RedisError as err:
            raise StateStoreError("State store unavailable", detail=str(err)) from err

    async def pop(self, key: str) -> str | None:
        try:
            return await self._redis.getdel(key)
        except RedisError as err:
            raise StateStoreError("State store unavailable", detail=str(err)) from err

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as err:
            raise StateStoreError("State store unavailable", detail=str(err)) from err

    async def delete_if_equals(self, key: str, value: str) -> bool:
        try:
            removed = await self._redis.eval(_DELETE_IF_EQUALS_SCRIPT, 1, key, value)
        except RedisError as err:
            raise StateStoreError("State store unavailable", detail=str(err)) from err
        return bool(removed)

    async def close(self) -> None:
        await self._redis.aclose()


def build_state_store(config: Settings) -> StateStore:
    """Return the store selected by configuration."""
    if config.redis_url:
        logger.info("Using Redis state store")
        return RedisStateStore.from_url(config.redis_url)
    logger.info("Using in-process state store")
    return MemoryStateStore(sweep_interval_seconds=config.store_sweep_interval_seconds)

# tests/conftest.py
from __future__ import annotations

import asyncio
import os
from collections.abc import Iterator, Sequence
from dataclasses import replace
from itertools import count
from typing import Any
from unittest.mock import AsyncMock

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ.setdefault("PYTEST_RUNNING", "true")

from arcade_gate.api.v1.dependencies import ServiceContainer, build_services, get_services
from arcade_gate.client import sign_session_message
from arcade_gate.core.settings import Settings
from arcade_gate.main import app as fastapi_app
from arcade_gate.services.captcha import HumanVerifier
from arcade_gate.services.ledger import LedgerEvent, LedgerFunction, LedgerGame, LedgerReceipt
from arcade_gate.services.store import MemoryStateStore

APP_ORIGIN = "https://arcade.test"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLedgerClient:
    """In-memory stand-in for the game contract."""

    def __init__(self) -> None:
        self.games: dict[int, LedgerGame] = {}
        self.tickets: dict[str, int] = {}
        self.calls: list[tuple[LedgerFunction, tuple[Any, ...]]] = []
        self.fail_with: Exception | None = None
        self.read_error: Exception | None = None
        self.revert = False
        self.emit_high_score = True
        self.closed = False
        self._tx_counter = count(1)

    def add_game(self, game_id: int, *, high_score: int = 0, pot: int = 0) -> LedgerGame:
        game = LedgerGame(
            game_id=game_id,
            end_time=int(START_TIME) + 86_400,
            high_score=high_score,
            leader=ZERO_ADDRESS,
            pot=pot,
        )
        self.games[game_id] = game
        return game

    async def get_game(self, game_id: int) -> LedgerGame:
        if self.read_error is not None:
            raise self.read_error
        return self.games.get(game_id) or LedgerGame(
            game_id=game_id, end_time=0, high_score=0, leader=ZERO_ADDRESS, pot=0
        )

    async def get_latest_game_id(self) -> int:
        if self.read_error is not None:
            raise self.read_error
        return max(self.games, default=0)

    async def get_tickets(self, address: str) -> int:
        if self.read_error is not None:
            raise self.read_error
        return self.tickets.get(address.lower(), 0)

    async def transact(self, function: LedgerFunction, args: Sequence[Any]) -> LedgerReceipt:
        self.calls.append((function, tuple(args)))
        if self.fail_with is not None:
            raise self.fail_with

        tx_hash = f"0x{next(self._tx_counter):064x}"
        if self.revert:
            return LedgerReceipt(tx_hash=tx_hash, status=0)

        events: tuple[LedgerEvent, ...] = ()
        if function is LedgerFunction.CREATE_GAME:
            game = self.add_game(max(self.games, default=0) + 1)
            events = (LedgerEvent("GameCreate", {"gameId": game.game_id, "endTime": game.end_time}),)
        elif function is LedgerFunction.END_GAME:
            game_id, player, score = args
            game = self.games.get(game_id) or self.add_game(game_id)
            events = (LedgerEvent("GameEnd", {"player": player, "gameId": game_id, "score": score}),)
            if score > game.high_score and self.emit_high_score:
                self.games[game_id] = replace(game, high_score=score, leader=player)
                events += (
                    LedgerEvent(
                        "GameEndHighScore",
                        {"player": player, "gameId": game_id, "score": score, "endTime": game.end_time},
                    ),
                )
        return LedgerReceipt(tx_hash=tx_hash, status=1, block_number=1, events=events)

    async def close(self) -> None:
        self.closed = True

    def calls_to(self, function: LedgerFunction) -> list[tuple[Any, ...]]:
        return [args for called, args in self.calls if called is function]


class YieldingStore:
    """Wraps a store and yields to the event loop before every call.

    Gathered coroutines then interleave at each store operation the way
    requests on a networked backend do.
    """

    def __init__(self, inner: MemoryStateStore) -> None:
        self._inner = inner

    def __getattr__(self, name: str) -> Any:
        method = getattr(self._inner, name)

        async def call(*args: Any, **kwargs: Any) -> Any:
            await asyncio.sleep(0)
            return await method(*args, **kwargs)

        return call


def build_telemetry(
    duration_ms: float,
    *,
    inputs: int = 0,
    input_event: str = "flap",
    input_jitter_ms: float = 7.0,
    frame_rate: float = 60.0,
    fps_values: Sequence[float] = (60.0, 58.0),
    vary_delta: bool = True,
    delta_jitter_ms: float = 1.0,
    spawn_every_ms: float | None = 2000.0,
    spawn_speed: float = 3.0,
    collisions: int = 1,
) -> list[dict[str, Any]]:
    """Return a plausible client event log for a run of ``duration_ms``.

    Frames are evenly spaced at ``frame_rate`` with frame deltas alternating
    by ``delta_jitter_ms``, inputs are spread across the run with a small
    cyclic offset, an obstacle spawns every ``spawn_every_ms``, an ``fps``
    sample is taken once per second and the run ends with a collision.
    """
    step = 1000.0 / frame_rate
    frame_count = int(duration_ms / step)
    input_every = frame_count // (inputs + 1) if inputs else 0
    sample_every = max(int(frame_rate), 1)
    next_spawn = spawn_every_ms
    placed = 0
    samples = 0
    events: list[dict[str, Any]] = []

    for frame_id in range(frame_count):
        timestamp = round(frame_id * step, 3)
        delta = step + (delta_jitter_ms if frame_id % 2 else -delta_jitter_ms) if vary_delta else step
        events.append(
            {"event": "frame", "time": timestamp, "frameId": frame_id, "data": {"deltaTime": delta / 1000}}
        )
        if inputs and placed < inputs and frame_id and frame_id % input_every == 0:
            pressed = timestamp + (placed % 3) * input_jitter_ms
            events.append({"event": input_event, "time": pressed, "frameId": frame_id, "data": {}})
            placed += 1
        if next_spawn is not None and timestamp >= next_spawn:
            events.append(
                {
                    "event": "spawn",
                    "time": timestamp,
                    "frameId": frame_id,
                    "data": {"y": 40.0 + (frame_id % 5) * 60.0, "speed": spawn_speed},
                }
            )
            next_spawn += spawn_every_ms
        if frame_id and frame_id % sample_every == 0:
            fps = fps_values[samples % len(fps_values)]
            events.append({"event": "fps", "time": timestamp, "data": {"fps": fps}})
            samples += 1

    end = round(frame_count * step, 3)
    for _ in range(collisions):
        events.append({"event": "collision", "time": end, "frameId": frame_count, "data": {}})
    return events


def make_settings(**overrides: Any) -> Settings:
    """Return settings isolated from the developer's environment file."""
    values: dict[str, Any] = {
        "app_origin": APP_ORIGIN,
        "recaptcha_secret_key": "test-secret",
        "game_master_private_key": None,
        "redis_url": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture()
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> MemoryStateStore:
    return MemoryStateStore(clock=clock)


@pytest.fixture()
def fake_ledger() -> FakeLedgerClient:
    ledger = FakeLedgerClient()
    ledger.add_game(1)
    return ledger


@pytest.fixture()
def verifier() -> AsyncMock:
    mock = AsyncMock(spec=HumanVerifier)
    mock.verify.return_value = 0.9
    return mock


@pytest.fixture()
def player() -> LocalAccount:
    """Return a fresh wallet for the primary player."""
    return Account.create()


@pytest.fixture()
def other_player() -> LocalAccount:
    """Return a fresh wallet for a second player."""
    return Account.create()


@pytest.fixture()
def signature_cookie(player: LocalAccount, test_settings: Settings) -> str:
    """Return the ``gameSig`` cookie value signed by ``player``."""
    pair = sign_session_message(player.key, test_settings.signature_message, player.address)
    return pair.to_cookie()


@pytest.fixture()
def services(
    test_settings: Settings,
    store: MemoryStateStore,
    fake_ledger: FakeLedgerClient,
    verifier: AsyncMock,
    clock: FakeClock,
) -> ServiceContainer:
    return build_services(
        test_settings,
        store=store,
        ledger_client=fake_ledger,
        verifier=verifier,
        clock=clock,
    )


@pytest.fixture()
def app(services: ServiceContainer) -> Iterator[FastAPI]:
    fastapi_app.dependency_overrides[get_services] = lambda: services
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.pop(get_services, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="https://testserver") as test_client:
        yield test_client

from unittest.mock import AsyncMock, MagicMock

import pytest

from arcade_gate.core.errors import LedgerError
from arcade_gate.services.ledger import (
    LedgerEvent,
    LedgerFunction,
    LedgerGateway,
    LedgerReceipt,
    Web3LedgerClient,
    load_ledger_config,
)
from arcade_gate.services.ledger_abi import GAME_EVENT_NAMES, build_contract_abi
from tests.conftest import FakeLedgerClient, make_settings

PLAYER = "0x00000000000000000000000000000000000000aa"


@pytest.fixture()
def gateway(fake_ledger: FakeLedgerClient) -> LedgerGateway:
    return LedgerGateway(fake_ledger)


@pytest.mark.asyncio
async def test_submit_returns_tx_hash(gateway: LedgerGateway, fake_ledger: FakeLedgerClient) -> None:
    result = await gateway.submit(LedgerFunction.CREATE_GAME)

    assert result.tx_hash.startswith("0x")
    assert result.receipt.status == 1
    assert not result.is_high_score
    assert fake_ledger.calls == [(LedgerFunction.CREATE_GAME, ())]


@pytest.mark.asyncio
async def test_end_game_reports_high_score_event(gateway: LedgerGateway) -> None:
    result = await gateway.submit(LedgerFunction.END_GAME, (1, PLAYER, 150))

    assert result.is_high_score
    assert await gateway.current_high_score(1) == 150


@pytest.mark.asyncio
async def test_end_game_without_event_is_not_a_high_score(
    gateway: LedgerGateway, fake_ledger: FakeLedgerClient
) -> None:
    fake_ledger.emit_high_score = False

    result = await gateway.submit(LedgerFunction.END_GAME, (1, PLAYER, 150))

    assert not result.is_high_score


def test_detect_high_score_requires_a_score() -> None:
    receipt = LedgerReceipt(
        tx_hash="0x01",
        status=1,
        events=(LedgerEvent("GameEndHighScore", {"player": PLAYER}),),
    )

    assert not LedgerGateway.detect_high_score(receipt)


def test_detect_high_score_ignores_other_events() -> None:
    receipt = LedgerReceipt(
        tx_hash="0x01",
        status=1,
        events=(LedgerEvent("GameEnd", {"player": PLAYER, "score": 5}),),
    )

    assert not LedgerGateway.detect_high_score(receipt)


@pytest.mark.asyncio
async def test_reverted_transaction_raises(gateway: LedgerGateway, fake_ledger: FakeLedgerClient) -> None:
    fake_ledger.revert = True

    with pytest.raises(LedgerError) as exc_info:
        await gateway.submit(LedgerFunction.WINNER_WITHDRAW, (1,))
    assert exc_info.value.message == "Transaction reverted"
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_client_failures_are_wrapped(gateway: LedgerGateway, fake_ledger: FakeLedgerClient) -> None:
    fake_ledger.fail_with = TimeoutError("node unreachable")

    with pytest.raises(LedgerError) as exc_info:
        await gateway.submit(LedgerFunction.START_GAME, (1, PLAYER))
    assert isinstance(exc_info.value.__cause__, TimeoutError)


@pytest.mark.asyncio
async def test_wrong_arity_never_reaches_the_client(
    gateway: LedgerGateway, fake_ledger: FakeLedgerClient
) -> None:
    with pytest.raises(LedgerError):
        await gateway.submit(LedgerFunction.END_GAME, (1, PLAYER))
    assert fake_ledger.calls == []


@pytest.mark.asyncio
async def test_read_failures_are_wrapped(gateway: LedgerGateway, fake_ledger: FakeLedgerClient) -> None:
    fake_ledger.read_error = ConnectionError("rpc down")

    with pytest.raises(LedgerError) as exc_info:
        await gateway.current_high_score(1)
    assert exc_info.value.message == "Failed to read game state"


@pytest.mark.asyncio
async def test_reads_pass_through(gateway: LedgerGateway, fake_ledger: FakeLedgerClient) -> None:
    fake_ledger.add_game(2, high_score=40, pot=10**15)
    fake_ledger.tickets[PLAYER] = 3

    assert await gateway.get_latest_game_id() == 2
    assert (await gateway.get_game(2)).pot == 10**15
    assert await gateway.get_tickets(PLAYER) == 3


@pytest.mark.asyncio
async def test_web3_client_refuses_writes_without_key() -> None:
    client = Web3LedgerClient(load_ledger_config(make_settings(game_master_private_key=None)))

    with pytest.raises(LedgerError) as exc_info:
        await client.transact(LedgerFunction.CREATE_GAME, ())
    assert "not configured" in exc_info.value.message


def test_abi_declares_contract_events() -> None:
    assert set(GAME_EVENT_NAMES) == {
        "GameCreate",
        "GameStart",
        "GameEnd",
        "GameEndHighScore",
        "GameWinnerWithdraw",
        "GameTicketsMinted",
    }


def _game_fields(abi: list[dict]) -> list[str]:
    (get_game,) = [entry for entry in abi if entry.get("name") == "getGame"]
    return [component["name"] for component in get_game["outputs"][0]["components"]]


def test_default_abi_matches_the_deployed_game_struct() -> None:
    assert _game_fields(build_contract_abi()) == ["endTime", "highScore", "leader", "pot"]
    assert _game_fields(build_contract_abi(pot_history=True))[-1] == "potHistory"


def _stub_get_game(client: Web3LedgerClient, record: tuple) -> None:
    contract = MagicMock()
    contract.functions.getGame.return_value.call = AsyncMock(return_value=record)
    client._contract = contract


@pytest.mark.asyncio
async def test_web3_client_reads_the_four_field_game() -> None:
    client = Web3LedgerClient(load_ledger_config(make_settings()))
    _stub_get_game(client, (1_700_086_400, 250, PLAYER, 10**15))

    game = await client.get_game(4)

    assert (game.game_id, game.high_score, game.pot) == (4, 250, 10**15)
    assert game.pot_history == ()


@pytest.mark.asyncio
async def test_web3_client_reads_pot_history_when_configured() -> None:
    config = load_ledger_config(make_settings(ledger_pot_history=True))
    client = Web3LedgerClient(config)
    _stub_get_game(client, (1_700_086_400, 250, PLAYER, 10**15, [10**14, 2 * 10**14]))

    game = await client.get_game(4)

    assert config.pot_history
    assert game.pot_history == (10**14, 2 * 10**14)

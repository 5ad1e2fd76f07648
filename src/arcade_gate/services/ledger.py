"""Gateway to the on-chain game ledger.

This module provides:

- ``Web3LedgerClient``: signs and sends contract writes from the game master
  account, waits for receipts and decodes the contract's events
- ``LedgerGateway``: the interface used by the orchestrator; wraps every
  client failure in ``LedgerError`` and interprets end-game receipts
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TimeExhausted
from web3.logs import DISCARD

from arcade_gate.core.errors import LedgerError
from arcade_gate.core.settings import Settings
from arcade_gate.services.ledger_abi import GAME_EVENT_NAMES, build_contract_abi

logger = logging.getLogger(__name__)

HIGH_SCORE_EVENT = "GameEndHighScore"
RECEIPT_STATUS_SUCCESS = 1


class LedgerFunction(str, Enum):
    """Contract writes the game master account submits."""

    CREATE_GAME = "createGame"
    START_GAME = "startGame"
    END_GAME = "endGame"
    WINNER_WITHDRAW = "winnerWithdraw"


# Positional argument count per write
_ARITY: dict[LedgerFunction, int] = {
    LedgerFunction.CREATE_GAME: 0,
    LedgerFunction.START_GAME: 2,
    LedgerFunction.END_GAME: 3,
    LedgerFunction.WINNER_WITHDRAW: 1,
}


@dataclass(frozen=True)
class LedgerGame:
    """Snapshot of a game record read from the ledger."""

    game_id: int
    end_time: int
    high_score: int
    leader: str
    pot: int
    pot_history: tuple[int, ...] = ()


@dataclass(frozen=True)
class LedgerEvent:
    """A decoded contract event."""

    name: str
    args: Mapping[str, Any]


@dataclass(frozen=True)
class LedgerReceipt:
    """Normalised transaction receipt."""

    tx_hash: str
    status: int
    block_number: int | None = None
    events: tuple[LedgerEvent, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a confirmed ledger write."""

    tx_hash: str
    receipt: LedgerReceipt
    is_high_score: bool = False


class LedgerClient(Protocol):
    """Transport to the contract; implemented over web3 or faked in tests."""

    async def get_game(self, game_id: int) -> LedgerGame: ...

    async def get_latest_game_id(self) -> int: ...

    async def get_tickets(self, address: str) -> int: ...

    async def transact(self, function: LedgerFunction, args: Sequence[Any]) -> LedgerReceipt: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class LedgerConfig:
    """Immutable configuration for the web3 client."""

    rpc_url: str
    contract_address: str
    private_key: str | None
    chain_id: int
    receipt_timeout_seconds: float
    pot_history: bool = False


def load_ledger_config(config: Settings) -> LedgerConfig:
    """Build ledger configuration from settings."""
    return LedgerConfig(
        rpc_url=config.ledger_rpc_url,
        contract_address=config.contract_address,
        private_key=config.game_master_private_key,
        chain_id=config.ledger_chain_id,
        receipt_timeout_seconds=float(config.ledger_receipt_timeout_seconds),
        pot_history=config.ledger_pot_history,
    )


class Web3LedgerClient:
    """Contract client signing writes with the game master key.

    Nonce allocation and broadcast are serialised under a lock so concurrent
    requests never reuse a nonce; receipt waits run outside the lock.
    """

    def __init__(self, config: LedgerConfig, w3: AsyncWeb3 | None = None) -> None:
        self.config = config
        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(config.rpc_url))
        self._contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(config.contract_address),
            abi=build_contract_abi(pot_history=config.pot_history),
        )
        self._account = Account.from_key(config.private_key) if config.private_key else None
        self._nonce_lock = asyncio.Lock()

    async def get_game(self, game_id: int) -> LedgerGame:
        record = await self._contract.functions.getGame(game_id).call()
        end_time, high_score, leader, pot = record[:4]
        pot_history = record[4] if len(record) > 4 else ()
        return LedgerGame(
            game_id=game_id,
            end_time=int(end_time),
            high_score=int(high_score),
            leader=str(leader),
            pot=int(pot),
            pot_history=tuple(int(value) for value in pot_history),
        )

    async def get_latest_game_id(self) -> int:
        return int(await self._contract.functions.getLatestGameId().call())

    async def get_tickets(self, address: str) -> int:
        checksum = AsyncWeb3.to_checksum_address(address)
        return int(await self._contract.functions.getTickets(checksum).call())

    async def transact(self, function: LedgerFunction, args: Sequence[Any]) -> LedgerReceipt:
        if self._account is None:
            raise LedgerError(
                "Ledger writes are not configured",
                detail="GAME_MASTER_PRIVATE_KEY is not set",
            )

        contract_call = getattr(self._contract.functions, function.value)(*args)
        async with self._nonce_lock:
            nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
            transaction = await contract_call.build_transaction(
                {
                    "from": self._account.address,
                    "nonce": nonce,
                    "chainId": self.config.chain_id,
                }
            )
            signed = self._account.sign_transaction(transaction)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)

        logger.info("Submitted %s as %s", function.value, AsyncWeb3.to_hex(tx_hash))
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.config.receipt_timeout_seconds,
            )
        except TimeExhausted as err:
            raise LedgerError(
                "Timed out waiting for transaction",
                detail=f"{function.value} {AsyncWeb3.to_hex(tx_hash)} not mined: {err}",
            ) from err

        return LedgerReceipt(
            tx_hash=AsyncWeb3.to_hex(receipt["transactionHash"]),
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
            events=self._decode_events(receipt),
        )

    def _decode_events(self, receipt: Any) -> tuple[LedgerEvent, ...]:
        decoded: list[LedgerEvent] = []
        for name in GAME_EVENT_NAMES:
            event = getattr(self._contract.events, name)()
            for log in event.process_receipt(receipt, errors=DISCARD):
                decoded.append(LedgerEvent(name=log["event"], args=dict(log["args"])))
        return tuple(decoded)

    async def close(self) -> None:
        provider = self._w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()


class LedgerGateway:
    """Submits validated actions and reads game state.

    Every failure surfaces as ``LedgerError`` with the underlying exception
    chained for logging.
    """

    def __init__(self, client: LedgerClient) -> None:
        self._client = client

    async def submit(self, function: LedgerFunction, args: Sequence[Any] = ()) -> SubmissionResult:
        """Send ``function(*args)`` and wait for a successful receipt."""
        expected = _ARITY[function]
        if len(args) != expected:
            raise LedgerError(
                "Invalid ledger call",
                detail=f"{function.value} takes {expected} arguments, got {len(args)}",
            )

        try:
            receipt = await self._client.transact(function, tuple(args))
        except LedgerError as err:
            logger.error("Ledger %s failed: %s", function.value, err.detail)
            raise
        except Exception as err:
            logger.error("Ledger %s failed: %r", function.value, err)
            raise LedgerError(f"Failed to {function.value}", detail=repr(err)) from err

        if receipt.status != RECEIPT_STATUS_SUCCESS:
            logger.error("Ledger %s reverted in %s", function.value, receipt.tx_hash)
            raise LedgerError(
                "Transaction reverted",
                detail=f"{function.value} {receipt.tx_hash} status {receipt.status}",
            )

        is_high_score = (
            self.detect_high_score(receipt) if function is LedgerFunction.END_GAME else False
        )
        logger.info("Ledger %s confirmed in %s", function.value, receipt.tx_hash)
        return SubmissionResult(tx_hash=receipt.tx_hash, receipt=receipt, is_high_score=is_high_score)

    @staticmethod
    def detect_high_score(receipt: LedgerReceipt) -> bool:
        """Return True only when a well-formed high-score event was emitted.

        Receipts without the event, or with an event lacking a score, count
        as "not a new high score".
        """
        try:
            for event in receipt.events:
                if event.name == HIGH_SCORE_EVENT and event.args.get("score") is not None:
                    return True
        except (AttributeError, TypeError):
            logger.warning("Unreadable events in receipt %s", receipt.tx_hash)
        return False

    async def get_game(self, game_id: int) -> LedgerGame:
        return await self._read("getGame", self._client.get_game(game_id))

    async def get_latest_game_id(self) -> int:
        return await self._read("getLatestGameId", self._client.get_latest_game_id())

    async def get_tickets(self, address: str) -> int:
        return await self._read("getTickets", self._client.get_tickets(address))

    async def current_high_score(self, game_id: int) -> int:
        game = await self.get_game(game_id)
        return game.high_score

    async def close(self) -> None:
        await self._client.close()

    @staticmethod
    async def _read(name: str, call: Any) -> Any:
        try:
            return await call
        except LedgerError:
            raise
        except Exception as err:
            logger.error("Ledger read %s failed: %r", name, err)
            raise LedgerError("Failed to read game state", detail=repr(err)) from err

"""ABI fragment of the arcade game contract used by the gateway.

The deployed contract's ``getGame`` returns four static fields. Later
deployments append a ``potHistory`` array; ``build_contract_abi`` selects the
shape the configured contract actually returns.
"""

from __future__ import annotations

from typing import Any

_UINT = {"type": "uint256", "internalType": "uint256"}
_ADDRESS = {"type": "address", "internalType": "address"}
_BOOL_OUT = [{"name": "", "type": "bool", "internalType": "bool"}]
_UINT_OUT = [{"name": "", **_UINT}]


def _event_input(name: str, kind: dict[str, str], indexed: bool) -> dict[str, Any]:
    return {"name": name, "indexed": indexed, **kind}


def _game_struct(pot_history: bool) -> dict[str, Any]:
    components: list[dict[str, Any]] = [
        {"name": "endTime", **_UINT},
        {"name": "highScore", **_UINT},
        {"name": "leader", **_ADDRESS},
        {"name": "pot", **_UINT},
    ]
    if pot_history:
        components.append({"name": "potHistory", "type": "uint256[]", "internalType": "uint256[]"})
    return {
        "name": "",
        "type": "tuple",
        "internalType": "struct ArcadeCasino.Game",
        "components": components,
    }


def build_contract_abi(*, pot_history: bool = False) -> list[dict[str, Any]]:
    """Return the contract ABI, with or without ``potHistory`` in ``getGame``."""
    return [
        {
            "type": "function",
            "name": "createGame",
            "inputs": [],
            "outputs": _UINT_OUT,
            "stateMutability": "nonpayable",
        },
        {
            "type": "function",
            "name": "startGame",
            "inputs": [{"name": "_gameId", **_UINT}, {"name": "_player", **_ADDRESS}],
            "outputs": _BOOL_OUT,
            "stateMutability": "nonpayable",
        },
        {
            "type": "function",
            "name": "endGame",
            "inputs": [
                {"name": "_gameId", **_UINT},
                {"name": "_player", **_ADDRESS},
                {"name": "_score", **_UINT},
            ],
            "outputs": _BOOL_OUT,
            "stateMutability": "nonpayable",
        },
        {
            "type": "function",
            "name": "winnerWithdraw",
            "inputs": [{"name": "_gameId", **_UINT}],
            "outputs": _BOOL_OUT,
            "stateMutability": "nonpayable",
        },
        {
            "type": "function",
            "name": "mintTickets",
            "inputs": [],
            "outputs": _UINT_OUT,
            "stateMutability": "payable",
        },
        {
            "type": "function",
            "name": "getGame",
            "inputs": [{"name": "_gameId", **_UINT}],
            "outputs": [_game_struct(pot_history)],
            "stateMutability": "view",
        },
        {
            "type": "function",
            "name": "getLatestGameId",
            "inputs": [],
            "outputs": _UINT_OUT,
            "stateMutability": "view",
        },
        {
            "type": "function",
            "name": "getTickets",
            "inputs": [{"name": "_player", **_ADDRESS}],
            "outputs": _UINT_OUT,
            "stateMutability": "view",
        },
        {
            "type": "event",
            "name": "GameCreate",
            "inputs": [_event_input("gameId", _UINT, True), _event_input("endTime", _UINT, False)],
            "anonymous": False,
        },
        {
            "type": "event",
            "name": "GameStart",
            "inputs": [_event_input("player", _ADDRESS, True), _event_input("gameId", _UINT, True)],
            "anonymous": False,
        },
        {
            "type": "event",
            "name": "GameEnd",
            "inputs": [
                _event_input("player", _ADDRESS, True),
                _event_input("gameId", _UINT, True),
                _event_input("score", _UINT, False),
            ],
            "anonymous": False,
        },
        {
            "type": "event",
            "name": "GameEndHighScore",
            "inputs": [
                _event_input("player", _ADDRESS, True),
                _event_input("gameId", _UINT, True),
                _event_input("score", _UINT, False),
                _event_input("endTime", _UINT, False),
            ],
            "anonymous": False,
        },
        {
            "type": "event",
            "name": "GameWinnerWithdraw",
            "inputs": [_event_input("player", _ADDRESS, True), _event_input("winnings", _UINT, False)],
            "anonymous": False,
        },
        {
            "type": "event",
            "name": "GameTicketsMinted",
            "inputs": [_event_input("player", _ADDRESS, True), _event_input("tickets", _UINT, False)],
            "anonymous": False,
        },
    ]


GAME_CONTRACT_ABI: list[dict[str, Any]] = build_contract_abi()

GAME_EVENT_NAMES: tuple[str, ...] = tuple(
    entry["name"] for entry in GAME_CONTRACT_ABI if entry["type"] == "event"
)

# Player-paid purchase; built for the wallet, never sent by the game master
MINT_TICKETS_SIGNATURE = "mintTickets()"

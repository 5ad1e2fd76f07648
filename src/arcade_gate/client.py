"""Async HTTP client for the session action API.

This module provides:

- ``ArcadeGateClient``: fetches CSRF tokens and submits session actions,
  carrying the ``sessionId`` and ``gameSig`` cookies between calls
- ``sign_session_message``: produces the ``gameSig`` payload for a wallet
  and refuses to emit one the server would reject
- ``build_ticket_purchase``: the ``mintTickets`` call a wallet sends to buy
  tickets; the player pays for it, so the service never submits it
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from arcade_gate.core.errors import AddressMismatchError
from arcade_gate.core.security import addresses_match, recover_message_signer
from arcade_gate.services.identity import GameSessionSignature
from arcade_gate.services.ledger_abi import MINT_TICKETS_SIGNATURE

logger = logging.getLogger(__name__)

HTTP_FORBIDDEN = 403
CSRF_REJECTION_REASON = "csrf"


class ArcadeClientError(RuntimeError):
    """Raised when the API cannot be reached or answers unreadably."""


class RetryReason(str, Enum):
    """Why a session action needed a second attempt."""

    NONE = "none"
    CSRF_REFRESH = "csrf_refresh"


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for the API client."""

    base_url: str
    app_origin: str = ""
    api_prefix: str = "/api"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ActionResult:
    """Decoded answer to a session action."""

    status_code: int
    body: dict[str, Any]
    attempts: int = 1
    retry_reason: RetryReason = RetryReason.NONE

    @property
    def ok(self) -> bool:
        return self.body.get("status") == "success"


def sign_session_message(
    private_key: str,
    message: str,
    address: str | None = None,
) -> GameSessionSignature:
    """Sign ``message`` with ``private_key`` as an EIP-191 personal message.

    Args:
        private_key: Hex private key of the player wallet.
        message: Text the server expects the wallet to sign.
        address: Address the player will claim; checked against the signer.

    Returns:
        The ``{message, signature}`` pair for the ``gameSig`` cookie.

    Raises:
        AddressMismatchError: If the recovered signer is not ``address``.
    """
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    signature = "0x" + bytes(signed.signature).hex()
    if address is not None:
        signer = recover_message_signer(message, signature)
        if not addresses_match(signer, address):
            raise AddressMismatchError(
                "Cookie Signature does not match player address",
                detail=f"recovered {signer}, claimed {address}",
            )
    return GameSessionSignature(message=message, signature=signature)


@dataclass(frozen=True)
class TicketPurchase:
    """Unsigned contract call for the player's wallet."""

    to: str
    data: str
    value: int

    def as_transaction(self) -> dict[str, Any]:
        return {"to": self.to, "data": self.data, "value": self.value}


def build_ticket_purchase(contract_address: str, quantity: int, price_wei: int) -> TicketPurchase:
    """Return the ``mintTickets`` call paying for ``quantity`` tickets."""
    if quantity < 1:
        raise ValueError("quantity must be at least 1")
    selector = function_signature_to_4byte_selector(MINT_TICKETS_SIGNATURE)
    return TicketPurchase(
        to=to_checksum_address(contract_address),
        data="0x" + bytes(selector).hex(),
        value=price_wei * quantity,
    )


class ArcadeGateClient:
    """HTTP client wrapper for the session action API."""

    def __init__(self, config: ClientConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._client_lock = asyncio.Lock()
        self._csrf_token: str | None = None
        self._session_id: str | None = None
        self._signature: GameSessionSignature | None = None

    async def __aenter__(self) -> ArcadeGateClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def use_signature(self, signature: GameSessionSignature | None) -> None:
        """Attach (or clear) the ``gameSig`` cookie sent with every action."""
        self._signature = signature

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                )
        return self._client

    def _headers(self, csrf_token: str | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.config.app_origin:
            headers["X-App-Origin"] = self.config.app_origin
        if csrf_token:
            headers["X-CSRF-Token"] = csrf_token

        cookies = []
        if self._session_id:
            cookies.append(f"sessionId={self._session_id}")
        if self._signature is not None:
            cookies.append(f"gameSig={quote(self._signature.to_cookie(), safe='')}")
        if cookies:
            headers["Cookie"] = "; ".join(cookies)
        return headers

    def _remember_session(self, response: httpx.Response) -> None:
        session_id = response.cookies.get("sessionId")
        if session_id:
            self._session_id = session_id

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: Any | None = None,
        csrf_token: str | None = None,
    ) -> httpx.Response:
        client = await self._ensure_client()
        try:
            response = await client.request(
                method,
                f"{self.config.api_prefix}{path}",
                json=json_data,
                headers=self._headers(csrf_token),
            )
        except httpx.HTTPError as exc:
            raise ArcadeClientError(f"Request to {path} failed: {exc}") from exc
        self._remember_session(response)
        return response

    async def fetch_csrf_token(self) -> str:
        """Fetch a fresh CSRF token, establishing a session if needed."""
        response = await self._request("GET", "/csrf")
        if response.status_code != httpx.codes.OK:
            raise ArcadeClientError(f"CSRF endpoint answered {response.status_code}")
        try:
            token = response.json()["token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ArcadeClientError("CSRF endpoint returned no token") from exc
        self._csrf_token = token
        return token

    async def session_action(self, payload: Mapping[str, Any]) -> ActionResult:
        """Submit one session action.

        A 403 with reason ``csrf`` means the token expired or was rotated by
        another tab: the token is refreshed once and the action sent again.
        Any other answer, including a second CSRF rejection, is returned
        as-is.
        """
        token = self._csrf_token or await self.fetch_csrf_token()
        response = await self._request("POST", "/session-action", json_data=dict(payload), csrf_token=token)
        body = self._decode(response)
        if not self._is_csrf_rejection(response, body):
            return ActionResult(status_code=response.status_code, body=body)

        logger.info("CSRF token rejected for %s; refreshing once", payload.get("action"))
        token = await self.fetch_csrf_token()
        response = await self._request("POST", "/session-action", json_data=dict(payload), csrf_token=token)
        return ActionResult(
            status_code=response.status_code,
            body=self._decode(response),
            attempts=2,
            retry_reason=RetryReason.CSRF_REFRESH,
        )

    async def create_game(self) -> ActionResult:
        return await self.session_action({"action": "create"})

    async def start_game(self, game_id: int, address: str, recaptcha_token: str) -> ActionResult:
        return await self.session_action(
            {
                "action": "start",
                "gameId": game_id,
                "address": address,
                "recaptchaToken": recaptcha_token,
            }
        )

    async def end_game(
        self,
        game_id: int,
        address: str,
        score: int,
        *,
        game: str | None = None,
        stats: Mapping[str, Any] | None = None,
        telemetry: list[Mapping[str, Any]] | None = None,
    ) -> ActionResult:
        payload: dict[str, Any] = {
            "action": "end",
            "gameId": game_id,
            "address": address,
            "score": score,
        }
        if game is not None:
            payload["game"] = game
        if stats is not None:
            payload["stats"] = dict(stats)
        if telemetry is not None:
            payload["telemetry"] = list(telemetry)
        return await self.session_action(payload)

    async def winner_withdraw(self, game_id: int) -> ActionResult:
        return await self.session_action({"action": "withdraw", "gameId": game_id})

    async def mint_tickets(self, quantity: int = 1) -> TicketPurchase:
        """Build a ticket purchase against the contract the server targets."""
        response = await self._request("GET", "/system/config")
        if response.status_code != httpx.codes.OK:
            raise ArcadeClientError(f"Config endpoint answered {response.status_code}")
        try:
            ledger = self._decode(response)["ledger"]
            contract_address = ledger["contract_address"]
            price_wei = int(ledger["ticket_price_wei"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ArcadeClientError("Config endpoint returned no ticket price") from exc
        return build_ticket_purchase(contract_address, quantity, price_wei)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise ArcadeClientError(
                f"Unreadable response ({response.status_code}) from session action"
            ) from exc
        if not isinstance(body, dict):
            raise ArcadeClientError("Session action returned a non-object body")
        return body

    @staticmethod
    def _is_csrf_rejection(response: httpx.Response, body: Mapping[str, Any]) -> bool:
        return response.status_code == HTTP_FORBIDDEN and body.get("reason") == CSRF_REJECTION_REASON

"""Binding of wallet addresses to sessions through signed messages."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from arcade_gate.core.errors import (
    AddressMismatchError,
    MalformedPayloadError,
    MissingSignatureError,
)
from arcade_gate.core.security import addresses_match, recover_message_signer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GameSessionSignature:
    """The ``{message, signature}`` pair a wallet produced for this game."""

    message: str
    signature: str

    def to_cookie(self) -> str:
        return json.dumps({"message": self.message, "signature": self.signature})


@dataclass(frozen=True)
class VerifiedIdentity:
    """Address proven by a valid signature."""

    address: str
    message: str


def parse_signature_payload(raw: str | None) -> GameSessionSignature:
    """Parse the ``gameSig`` cookie value into a signature pair."""
    if not raw:
        raise MissingSignatureError("Missing or invalid signature")
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as err:
        raise MalformedPayloadError("Invalid signature", detail=f"gameSig is not JSON: {err}") from err

    if not isinstance(data, dict):
        raise MalformedPayloadError("Invalid signature", detail="gameSig is not an object")
    message = data.get("message")
    signature = data.get("signature")
    if not isinstance(message, str) or not isinstance(signature, str) or not signature:
        raise MalformedPayloadError("Invalid signature", detail="gameSig lacks message/signature")
    return GameSessionSignature(message=message, signature=signature)


class IdentityBinder:
    """Verifies that the caller controls the wallet address it claims.

    ``expected_message`` returns the text a wallet must have signed for a
    session, or None when any message is acceptable.
    """

    def __init__(self, expected_message: Callable[[str], str | None] | None = None) -> None:
        self._expected_message = expected_message

    def bind_and_verify(
        self,
        cookie_payload: str | None,
        claimed_address: str,
        *,
        session_id: str | None = None,
    ) -> VerifiedIdentity:
        pair = parse_signature_payload(cookie_payload)

        if self._expected_message is not None and session_id is not None:
            expected = self._expected_message(session_id)
            if expected is not None and pair.message != expected:
                raise MalformedPayloadError(
                    "Invalid signature",
                    detail="signed message is not bound to this session",
                )

        try:
            signer = recover_message_signer(pair.message, pair.signature)
        except ValueError as err:
            raise MalformedPayloadError("Invalid signature", detail=str(err)) from err

        if not addresses_match(signer, claimed_address):
            logger.warning("Signature signer %s does not match claimed %s", signer, claimed_address)
            raise AddressMismatchError(
                "Cookie Signature does not match player address",
                detail=f"recovered {signer}, claimed {claimed_address}",
            )
        return VerifiedIdentity(address=signer, message=pair.message)

"""Signature and token utilities built on secp256k1 wallet primitives."""
from __future__ import annotations

import hmac
import secrets

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import is_address, to_checksum_address

SESSION_ID_BYTES = 16
CSRF_TOKEN_BYTES = 32


def recover_message_signer(message: str, signature: str) -> str:
    """Recover the checksummed address that signed ``message``.

    Args:
        message: Text the wallet displayed and signed (EIP-191 personal message).
        signature: Hex-encoded 65-byte signature, with or without ``0x``.

    Returns:
        The signer address.

    Raises:
        ValueError: If the signature cannot be decoded or recovered.
    """
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as err:
        raise ValueError(f"Unable to recover signer: {err}") from err


def addresses_match(left: str, right: str) -> bool:
    """Compare two hex addresses case-insensitively."""
    return left.strip().lower() == right.strip().lower()


def normalize_address(address: str) -> str:
    """Return the checksummed form of ``address``.

    Raises:
        ValueError: If ``address`` is not a 20-byte hex address.
    """
    cleaned = address.strip()
    if not is_address(cleaned):
        raise ValueError(f"Invalid address: {address!r}")
    return to_checksum_address(cleaned)


def generate_session_id() -> str:
    """Return a new opaque session identifier."""
    return secrets.token_hex(SESSION_ID_BYTES)


def generate_csrf_token() -> str:
    """Return a new high-entropy anti-forgery token."""
    return secrets.token_hex(CSRF_TOKEN_BYTES)


def tokens_equal(expected: str, presented: str) -> bool:
    """Compare two tokens in constant time."""
    return hmac.compare_digest(expected.encode(), presented.encode())

"""
ECDSA / secp256k1 Local Key Management.

Local-key counterpart of the node's personal namespace:
- EIP-191 message signing and signer recovery
- EIP-1559 transaction signing

Signatures are deterministic: eth-account derives the ECDSA nonce with
RFC 6979, so the same (message, key) always yields the same 65 bytes.

Keys are read from PRIVATE_KEY, in the environment or ~/.prosopon/.env.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional, Union

from dotenv import load_dotenv
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from .codec import decode_hex, encode_hex, message_bytes, normalize_private_key, to_checksum_address


# Default config directory
PROSOPON_DIR = Path.home() / ".prosopon"
PROSOPON_ENV = PROSOPON_DIR / ".env"


def load_private_key(env_path: Optional[Path] = None) -> str:
    """
    Load private key from .env file or environment.

    Returns:
        0x-prefixed hex private key

    Raises:
        ValueError: If PRIVATE_KEY is not set
        MalformedHexError: If PRIVATE_KEY is not a 32-byte hex key
    """
    env_path = env_path or PROSOPON_ENV

    if env_path.exists():
        load_dotenv(env_path, override=True)

    private_key = os.environ.get("PRIVATE_KEY")
    if not private_key:
        raise ValueError(
            f"PRIVATE_KEY not found. Set PRIVATE_KEY in the environment or in {env_path}"
        )

    return normalize_private_key(private_key)


def get_account(private_key: Optional[str] = None) -> LocalAccount:
    """
    Get an eth-account LocalAccount from a private key.

    Args:
        private_key: Hex private key, with or without 0x.
                     If None, loads from .env.
    """
    if private_key is None:
        private_key = load_private_key()
    return Account.from_key(normalize_private_key(private_key))


def get_address(private_key: Optional[str] = None) -> str:
    """Checksummed address derived from a private key."""
    return get_account(private_key).address


def sign_message(message: Union[str, bytes], private_key: Optional[str] = None) -> str:
    """
    Sign a message using EIP-191 personal_sign.

    ``message`` follows node semantics: 0x-prefixed strings are hex-decoded,
    other strings are UTF-8 text.

    Returns:
        0x-prefixed hex signature (65 bytes: r + s + v)
    """
    return encode_hex(sign_message_bytes(message_bytes(message), private_key))


def sign_message_bytes(message: bytes, private_key: Optional[str] = None) -> bytes:
    """
    Sign a message (bytes) using EIP-191 personal_sign.

    Returns:
        Signature as bytes (65 bytes: r + s + v)
    """
    account = get_account(private_key)
    signable = encode_defunct(primitive=message)
    signed = account.sign_message(signable)
    return bytes(signed.signature)


def recover_message(message: Union[str, bytes], signature: Union[str, bytes]) -> str:
    """
    Recover the checksummed signer address of an EIP-191 signature.
    """
    if isinstance(signature, str):
        signature = decode_hex(signature)
    signable = encode_defunct(primitive=message_bytes(message))
    return to_checksum_address(Account.recover_message(signable, signature=signature))


def sign_transaction(tx: dict[str, Any], private_key: Optional[str] = None) -> tuple[bytes, bytes]:
    """
    Sign a transaction dict in eth-account form.

    Returns:
        Tuple of (raw_transaction, transaction_hash)
    """
    account = get_account(private_key)
    signed = account.sign_transaction(tx)
    return bytes(signed.raw_transaction), bytes(signed.hash)

"""
Hex / address / quantity codec.

Single point of conversion between Python values and the 0x-prefixed
strings that cross the JSON-RPC boundary.
"""

from __future__ import annotations

import string
from typing import Union

from eth_hash.auto import keccak

from ..errors import MalformedHexError

_HEX_DIGITS = frozenset(string.hexdigits)


def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest.  NOT hashlib.sha3_256 (NIST SHA-3 pads differently)."""
    return keccak(data)


def _strip_prefix(value: str) -> str:
    if value[:2] in ("0x", "0X"):
        return value[2:]
    return value


def _check_digits(digits: str, original: str) -> None:
    if not all(c in _HEX_DIGITS for c in digits):
        raise MalformedHexError(f"Non-hex characters in {original!r}")


def encode_hex(data: bytes) -> str:
    """Render bytes as 0x-prefixed lowercase hex."""
    return "0x" + bytes(data).hex()


def decode_hex(value: str) -> bytes:
    """
    Decode a 0x-prefixed hex string.

    Raises:
        MalformedHexError: If the prefix is missing, the digits are not hex,
            or the digit count is odd.
    """
    if not isinstance(value, str):
        raise MalformedHexError(f"Expected hex string, got {type(value).__name__}")
    if value[:2] not in ("0x", "0X"):
        raise MalformedHexError(f"Missing 0x prefix: {value!r}")
    digits = value[2:]
    _check_digits(digits, value)
    if len(digits) % 2:
        raise MalformedHexError(f"Odd number of hex digits: {value!r}")
    return bytes.fromhex(digits)


def _address_digits(address: Union[str, bytes]) -> str:
    if isinstance(address, (bytes, bytearray)):
        if len(address) != 20:
            raise MalformedHexError(f"Address must be 20 bytes, got {len(address)}")
        return bytes(address).hex()
    if not isinstance(address, str):
        raise MalformedHexError(f"Expected address, got {type(address).__name__}")
    digits = _strip_prefix(address)
    _check_digits(digits, address)
    if len(digits) != 40:
        raise MalformedHexError(f"Address must be 40 hex digits: {address!r}")
    return digits.lower()


def to_checksum_address(address: Union[str, bytes]) -> str:
    """Convert an address to EIP-55 mixed-case checksum format."""
    addr = _address_digits(address)
    addr_hash = keccak256(addr.encode("ascii")).hex()
    result = "0x"
    for i, c in enumerate(addr):
        if c in "abcdef":
            result += c.upper() if int(addr_hash[i], 16) >= 8 else c
        else:
            result += c
    return result


def is_address(value: object) -> bool:
    try:
        _address_digits(value)  # type: ignore[arg-type]
    except MalformedHexError:
        return False
    return True


def normalize_private_key(key: Union[str, bytes]) -> str:
    """
    Normalize a raw secp256k1 private key to 0x-prefixed lowercase hex.

    Accepts 64 hex digits with or without the 0x prefix, or 32 raw bytes.
    """
    if isinstance(key, (bytes, bytearray)):
        if len(key) != 32:
            raise MalformedHexError(f"Private key must be 32 bytes, got {len(key)}")
        return encode_hex(bytes(key))
    if not isinstance(key, str):
        raise MalformedHexError(f"Expected private key, got {type(key).__name__}")
    digits = _strip_prefix(key.strip())
    _check_digits(digits, "<private key>")
    if len(digits) != 64:
        raise MalformedHexError(f"Private key must be 64 hex digits, got {len(digits)}")
    return "0x" + digits.lower()


def to_quantity(value: int) -> str:
    """JSON-RPC quantity: 0x-prefixed, no leading zeros, 0 -> '0x0'."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"Quantity must be a non-negative int, got {value!r}")
    return hex(value)


def from_quantity(value: str) -> int:
    if not isinstance(value, str) or value[:2] not in ("0x", "0X") or len(value) == 2:
        raise MalformedHexError(f"Not a hex quantity: {value!r}")
    _check_digits(value[2:], value)
    return int(value, 16)


def parse_quantity(value: Union[int, str]) -> int:
    """
    Parse a caller-supplied numeric field.

    Accepts ints, decimal strings ("21000") and hex strings ("0x59682F00").
    """
    if isinstance(value, bool):
        raise ValueError("Booleans are not quantities")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        if text[:2] in ("0x", "0X"):
            result = from_quantity(text)
        elif text.isdigit():
            result = int(text, 10)
        else:
            raise ValueError(f"Unparsable quantity: {value!r}")
    else:
        raise ValueError(f"Unsupported quantity type: {type(value).__name__}")
    if result < 0:
        raise ValueError(f"Quantity must be non-negative, got {result}")
    return result


def message_bytes(message: Union[str, bytes]) -> bytes:
    """
    Bytes a message stands for when signed.

    0x-prefixed strings are hex, any other string is UTF-8 text.
    """
    if isinstance(message, (bytes, bytearray)):
        return bytes(message)
    if message[:2] in ("0x", "0X"):
        return decode_hex(message)
    return message.encode("utf-8")

"""
Transaction Builder - Assemble and validate EIP-1559 transactions.

Caller fields are validated before any node query.  Missing fields are
filled from the node:

- nonce:                eth_getTransactionCount(from, "latest")
- chainId:              eth_chainId (unless configured)
- gas:                  eth_estimateGas
- maxPriorityFeePerGas: eth_maxPriorityFeePerGas (default tip if unsupported)
- maxFeePerGas:         2 * baseFeePerGas(latest) + maxPriorityFeePerGas

The nonce is a plain read: two transactions built concurrently for the
same sender can get the same nonce.  Callers that need sequential nonces
must serialize their own builds or pass ``nonce`` explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Optional

from ..config import DEFAULT_PRIORITY_FEE, get_chain_id
from ..errors import InvalidFieldError, MalformedHexError, RpcError
from ..sigil.codec import (
    decode_hex,
    encode_hex,
    keccak256,
    parse_quantity,
    to_checksum_address,
    to_quantity,
)

if TYPE_CHECKING:
    from .rpc import RpcClient

logger = logging.getLogger(__name__)

# JSON-RPC error code for an unimplemented method
METHOD_NOT_FOUND = -32601

_ALIASES = {
    "from_": "from",
    "max_fee_per_gas": "maxFeePerGas",
    "max_priority_fee_per_gas": "maxPriorityFeePerGas",
    "chain_id": "chainId",
    "input": "data",
}

_KNOWN_FIELDS = {
    "from",
    "to",
    "value",
    "gas",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "nonce",
    "data",
    "chainId",
    "type",
}

_QUANTITY_FIELDS = ("value", "gas", "maxFeePerGas", "maxPriorityFeePerGas", "nonce", "chainId")


@dataclass(frozen=True)
class UnsignedTransaction:
    """Fully populated EIP-1559 (type 2) transaction."""

    from_: str
    to: Optional[str]
    value: int
    gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    nonce: int
    chain_id: int
    data: bytes = b""

    def to_rpc(self) -> dict[str, Any]:
        """JSON-RPC form: camelCase keys, hex quantities."""
        params: dict[str, Any] = {
            "from": self.from_,
            "value": to_quantity(self.value),
            "gas": to_quantity(self.gas),
            "maxFeePerGas": to_quantity(self.max_fee_per_gas),
            "maxPriorityFeePerGas": to_quantity(self.max_priority_fee_per_gas),
            "nonce": to_quantity(self.nonce),
            "chainId": to_quantity(self.chain_id),
            "type": "0x2",
        }
        if self.to is not None:
            params["to"] = self.to
        if self.data:
            params["data"] = encode_hex(self.data)
        return params

    def to_signable(self) -> dict[str, Any]:
        """eth-account form: int quantities, checksummed ``to``, no ``from``."""
        tx: dict[str, Any] = {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "value": self.value,
            "gas": self.gas,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "data": encode_hex(self.data),
        }
        if self.to is not None:
            tx["to"] = self.to
        return tx


@dataclass(frozen=True)
class SignedTransaction:
    """Serialized signed transaction.  Never mutated once produced."""

    raw: bytes

    @classmethod
    def from_hex(cls, raw_hex: str) -> "SignedTransaction":
        return cls(raw=decode_hex(raw_hex))

    @property
    def raw_hex(self) -> str:
        return encode_hex(self.raw)

    @property
    def hash(self) -> str:
        return encode_hex(keccak256(self.raw))


def normalize_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Map snake_case aliases onto JSON-RPC names and drop ``None`` values."""
    normalized: dict[str, Any] = {}
    for key, value in fields.items():
        name = _ALIASES.get(key, key)
        if name not in _KNOWN_FIELDS:
            raise InvalidFieldError(key, "unknown transaction field")
        if value is not None:
            normalized[name] = value
    return normalized


def validate_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate caller-supplied fields without querying the node.

    Returns:
        Dict with checksummed addresses, int quantities and bytes data

    Raises:
        InvalidFieldError: On the first malformed field
    """
    normalized = normalize_fields(fields)

    if "from" not in normalized:
        raise InvalidFieldError("from", "sender address is required")
    clean: dict[str, Any] = {}
    for name in ("from", "to"):
        if name in normalized:
            try:
                clean[name] = to_checksum_address(normalized[name])
            except MalformedHexError as exc:
                raise InvalidFieldError(name, str(exc)) from exc

    for name in _QUANTITY_FIELDS:
        if name in normalized:
            try:
                clean[name] = parse_quantity(normalized[name])
            except ValueError as exc:
                raise InvalidFieldError(name, str(exc)) from exc

    if "type" in normalized:
        try:
            tx_type = parse_quantity(normalized["type"])
        except ValueError as exc:
            raise InvalidFieldError("type", str(exc)) from exc
        if tx_type != 2:
            raise InvalidFieldError("type", f"only type 2 (EIP-1559) is supported, got {tx_type}")

    if "data" in normalized:
        data = normalized["data"]
        if isinstance(data, (bytes, bytearray)):
            clean["data"] = bytes(data)
        else:
            try:
                clean["data"] = decode_hex(data)
            except MalformedHexError as exc:
                raise InvalidFieldError("data", str(exc)) from exc

    if "maxFeePerGas" in clean and "maxPriorityFeePerGas" in clean:
        if clean["maxPriorityFeePerGas"] > clean["maxFeePerGas"]:
            raise InvalidFieldError(
                "maxPriorityFeePerGas",
                f"{clean['maxPriorityFeePerGas']} exceeds maxFeePerGas {clean['maxFeePerGas']}",
            )

    return clean


def render_rpc_fields(clean: Mapping[str, Any]) -> dict[str, Any]:
    """Render validated (possibly partial) fields in JSON-RPC form."""
    params: dict[str, Any] = {}
    for name, value in clean.items():
        if name == "data":
            params[name] = encode_hex(value)
        elif name in _QUANTITY_FIELDS:
            params[name] = to_quantity(value)
        else:
            params[name] = value
    return params


class TransactionBuilder:
    """
    Fill and validate transactions against a node.

    Args:
        client: RPC client used for default lookups
        chain_id: Fixed chain ID (default: PROSOPON_CHAIN_ID, else eth_chainId)
        default_priority_fee: Tip used when eth_maxPriorityFeePerGas is unsupported
    """

    def __init__(
        self,
        client: "RpcClient",
        chain_id: Optional[int] = None,
        default_priority_fee: int = DEFAULT_PRIORITY_FEE,
    ) -> None:
        self._client = client
        self._chain_id = chain_id if chain_id is not None else get_chain_id()
        self.default_priority_fee = default_priority_fee

    def build(self, fields: Mapping[str, Any]) -> UnsignedTransaction:
        """
        Build a fully populated unsigned transaction.

        Args:
            fields: Partial transaction in JSON-RPC naming (snake_case accepted)

        Returns:
            UnsignedTransaction

        Raises:
            InvalidFieldError: If a supplied field is malformed
        """
        clean = validate_fields(fields)
        sender = clean["from"]

        chain_id = clean.get("chainId")
        if chain_id is None:
            chain_id = self._chain_id if self._chain_id is not None else self._client.chain_id()

        nonce = clean.get("nonce")
        if nonce is None:
            nonce = self._client.get_transaction_count(sender, "latest")
            logger.debug("Using nonce %d for %s (read from node)", nonce, sender)

        tip = clean.get("maxPriorityFeePerGas")
        if tip is None:
            tip = self._priority_fee()

        max_fee = clean.get("maxFeePerGas")
        if max_fee is None:
            max_fee = self._max_fee(tip)
        elif tip > max_fee:
            raise InvalidFieldError("maxPriorityFeePerGas", f"{tip} exceeds maxFeePerGas {max_fee}")

        gas = clean.get("gas")
        if gas is None:
            estimate = render_rpc_fields({k: v for k, v in clean.items() if k != "gas"})
            gas = self._client.estimate_gas(estimate)

        return UnsignedTransaction(
            from_=sender,
            to=clean.get("to"),
            value=clean.get("value", 0),
            gas=gas,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=tip,
            nonce=nonce,
            chain_id=chain_id,
            data=clean.get("data", b""),
        )

    def _priority_fee(self) -> int:
        try:
            return self._client.max_priority_fee_per_gas()
        except RpcError as exc:
            if exc.code != METHOD_NOT_FOUND:
                raise
            logger.info(
                "Node does not implement eth_maxPriorityFeePerGas, using %d wei",
                self.default_priority_fee,
            )
            return self.default_priority_fee

    def _max_fee(self, tip: int) -> int:
        block = self._client.get_block("latest")
        base_fee = (block or {}).get("baseFeePerGas")
        if base_fee is None:
            raise InvalidFieldError(
                "maxFeePerGas", "node reports no baseFeePerGas; supply maxFeePerGas explicitly"
            )
        return 2 * parse_quantity(base_fee) + tip

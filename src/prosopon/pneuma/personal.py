"""
Personal namespace client.

Thin wrapper over the node's ``personal_*`` methods.  Arguments pass
through the codec on the way out and addresses are checksummed on the
way back.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from ..config import get_backend
from ..errors import SigningError
from ..sigil.codec import encode_hex, message_bytes, normalize_private_key, to_checksum_address
from .rpc import RpcClient
from .tx import UnsignedTransaction, render_rpc_fields, validate_fields

logger = logging.getLogger(__name__)

TxLike = Union[UnsignedTransaction, Mapping[str, Any]]


def _tx_params(tx: TxLike) -> dict[str, Any]:
    if isinstance(tx, UnsignedTransaction):
        return tx.to_rpc()
    return render_rpc_fields(validate_fields(tx))


class PersonalClient:
    """
    Args:
        rpc: Shared RPC client
        backend: Node flavour; geth wants raw keys without the 0x prefix
    """

    def __init__(self, rpc: RpcClient, backend: Optional[str] = None) -> None:
        self.rpc = rpc
        self.backend = backend or get_backend()

    def new_account(self, passphrase: str) -> str:
        """Create a key in the node's keystore.  Returns its checksummed address."""
        address = to_checksum_address(self.rpc.call("personal_newAccount", [passphrase]))
        logger.info("Created account %s", address)
        return address

    def get_accounts(self) -> list[str]:
        return [to_checksum_address(a) for a in self.rpc.call("personal_listAccounts", [])]

    def lock_account(self, address: str) -> bool:
        return bool(self.rpc.call("personal_lockAccount", [to_checksum_address(address)]))

    def unlock_account(self, address: str, passphrase: str, duration: Optional[int] = None) -> bool:
        """
        Unlock a keystore account for ``duration`` seconds.

        Node semantics apply: geth treats 0 as "until the node exits" and
        None as its 300s default.
        """
        params: list[Any] = [to_checksum_address(address), passphrase]
        if duration is not None:
            params.append(duration)
        return bool(self.rpc.call("personal_unlockAccount", params))

    def sign(self, message: Union[str, bytes], address: str, passphrase: str) -> str:
        """
        EIP-191 sign ``message`` with a keystore account.

        Returns:
            0x-prefixed 65-byte signature
        """
        return self.rpc.call(
            "personal_sign",
            [encode_hex(message_bytes(message)), to_checksum_address(address), passphrase],
        )

    def ec_recover(self, message: Union[str, bytes], signature: str) -> str:
        recovered = self.rpc.call(
            "personal_ecRecover", [encode_hex(message_bytes(message)), signature]
        )
        return to_checksum_address(recovered)

    def import_raw_key(self, key: Union[str, bytes], passphrase: str) -> str:
        """
        Import a raw private key into the node's keystore.

        The key is accepted with or without 0x; geth is sent bare hex, other
        backends the prefixed form.
        """
        normalized = normalize_private_key(key)
        wire_key = normalized[2:] if self.backend == "geth" else normalized
        address = to_checksum_address(self.rpc.call("personal_importRawKey", [wire_key, passphrase]))
        logger.info("Imported raw key for %s", address)
        return address

    def sign_transaction(self, tx: TxLike, passphrase: str) -> str:
        """
        Sign a transaction with a keystore account without sending it.

        Returns:
            0x-prefixed raw signed transaction
        """
        result = self.rpc.call("personal_signTransaction", [_tx_params(tx), passphrase])
        if isinstance(result, dict):
            raw = result.get("raw")
            if not raw:
                raise SigningError("personal_signTransaction returned no raw transaction")
            return raw
        return result

    def send_transaction(self, tx: TxLike, passphrase: str) -> str:
        """Sign and broadcast in one node call.  Returns the transaction hash."""
        tx_hash = self.rpc.call("personal_sendTransaction", [_tx_params(tx), passphrase])
        logger.info("Sent transaction %s", tx_hash)
        return tx_hash

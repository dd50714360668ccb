"""
Shared fixtures: an in-memory node speaking the personal/eth namespaces.

FakeNode is a Transport.  It answers requests inline, like an HTTP
round trip, unless ``hold`` is set, in which case envelopes queue up
until the test releases them in whatever order it likes.
"""

from __future__ import annotations

import secrets
import threading
from typing import Any, Callable, Optional

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_hash.auto import keccak

from prosopon.pneuma.personal import PersonalClient
from prosopon.pneuma.rpc import RpcClient

# well-known test key, never funded
DEV_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
DEV_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"

RECIPIENT = "0x6e599da0bff7a6598ac1224e4985430bf16458a4"
CHAIN_ID = 1337


class NodeError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16) if value.startswith("0x") else int(value)


def _signable(tx: dict[str, Any]) -> dict[str, Any]:
    signable = {
        "type": 2,
        "chainId": _int(tx.get("chainId", hex(CHAIN_ID))),
        "nonce": _int(tx["nonce"]),
        "value": _int(tx.get("value", "0x0")),
        "gas": _int(tx["gas"]),
        "maxFeePerGas": _int(tx["maxFeePerGas"]),
        "maxPriorityFeePerGas": _int(tx["maxPriorityFeePerGas"]),
        "data": tx.get("data", "0x"),
    }
    if tx.get("to"):
        signable["to"] = tx["to"]
    return signable


class FakeNode:
    """Minimal geth-like keystore node."""

    def __init__(self) -> None:
        self.keys: dict[str, tuple[str, str]] = {}  # lower address -> (key, passphrase)
        self.unlocked: set[str] = set()
        self.nonces: dict[str, int] = {}
        self.sent: dict[str, bytes] = {}
        self.receipt_status = "0x1"
        self.mined = True
        self.supports_priority_fee = True
        self.base_fee = 7
        self.requests: list[dict[str, Any]] = []
        self.hold = False
        self.held: dict[int, dict[str, Any]] = {}
        self.overrides: dict[str, Callable[..., Any]] = {}
        self.closed = False
        self._deliver: Optional[Callable[[Any], None]] = None
        self._lock = threading.Lock()

    # ---- Transport protocol ----

    def send(
        self,
        envelope: dict[str, Any],
        deliver: Callable[[Any], None],
        timeout: Optional[float] = None,
    ) -> None:
        with self._lock:
            self.requests.append(envelope)
            self._deliver = deliver
            if self.hold:
                self.held[envelope["id"]] = envelope
                return
        deliver(self.answer(envelope))

    def close(self) -> None:
        self.closed = True

    # ---- test helpers ----

    def add_account(self, key: str, passphrase: str = "") -> str:
        address = Account.from_key(key).address.lower()
        self.keys[address] = (key, passphrase)
        return address

    def methods(self) -> list[str]:
        return [r["method"] for r in self.requests]

    def last(self, method: str) -> dict[str, Any]:
        return [r for r in self.requests if r["method"] == method][-1]

    def release(self, request_id: int, result: Any = None, error: Optional[dict] = None) -> None:
        """Deliver a held request, answering it normally unless told otherwise."""
        envelope = self.held.pop(request_id)
        if error is not None:
            response = {"jsonrpc": "2.0", "id": request_id, "error": error}
        elif result is not None:
            response = {"jsonrpc": "2.0", "id": request_id, "result": result}
        else:
            response = self.answer(envelope)
        assert self._deliver is not None
        self._deliver(response)

    def answer(self, envelope: dict[str, Any]) -> dict[str, Any]:
        method = envelope["method"]
        handler = self.overrides.get(method) or getattr(self, method, None)
        try:
            if handler is None:
                raise NodeError(-32601, f"the method {method} does not exist/is not available")
            result = handler(*envelope["params"])
        except NodeError as exc:
            return {
                "jsonrpc": "2.0",
                "id": envelope["id"],
                "error": {"code": exc.code, "message": exc.message},
            }
        return {"jsonrpc": "2.0", "id": envelope["id"], "result": result}

    def _key(self, address: str, passphrase: Optional[str] = None) -> str:
        entry = self.keys.get(address.lower())
        if entry is None:
            raise NodeError(-32000, "unknown account")
        key, expected = entry
        if passphrase is None:
            if address.lower() not in self.unlocked:
                raise NodeError(-32000, "authentication needed: password or unlock")
        elif passphrase != expected:
            raise NodeError(-32000, "could not decrypt key with given password")
        return key

    # ---- personal namespace ----

    def personal_newAccount(self, passphrase: str) -> str:
        return self.add_account("0x" + secrets.token_hex(32), passphrase)

    def personal_listAccounts(self) -> list[str]:
        return list(self.keys)

    def personal_lockAccount(self, address: str) -> bool:
        self.unlocked.discard(address.lower())
        return True

    def personal_unlockAccount(self, address: str, passphrase: str, duration: int = 300) -> bool:
        self._key(address, passphrase)
        self.unlocked.add(address.lower())
        return True

    def personal_sign(self, message: str, address: str, passphrase: str) -> str:
        key = self._key(address, passphrase)
        signed = Account.sign_message(encode_defunct(hexstr=message), private_key=key)
        return "0x" + bytes(signed.signature).hex()

    def personal_ecRecover(self, message: str, signature: str) -> str:
        return Account.recover_message(encode_defunct(hexstr=message), signature=signature).lower()

    def personal_importRawKey(self, key: str, passphrase: str) -> str:
        if key.startswith("0x"):
            raise NodeError(-32000, "invalid hex character 'x' in private key")
        return self.add_account("0x" + key, passphrase)

    def personal_signTransaction(self, tx: dict[str, Any], passphrase: str) -> dict[str, Any]:
        key = self._key(tx["from"], passphrase)
        signed = Account.sign_transaction(_signable(tx), key)
        return {"raw": "0x" + bytes(signed.raw_transaction).hex(), "tx": tx}

    def personal_sendTransaction(self, tx: dict[str, Any], passphrase: str) -> str:
        raw = self.personal_signTransaction(tx, passphrase)["raw"]
        return self.eth_sendRawTransaction(raw)

    # ---- eth namespace ----

    def eth_sign(self, address: str, message: str) -> str:
        key = self._key(address)
        signed = Account.sign_message(encode_defunct(hexstr=message), private_key=key)
        return "0x" + bytes(signed.signature).hex()

    def eth_signTransaction(self, tx: dict[str, Any]) -> dict[str, Any]:
        key = self._key(tx["from"])
        signed = Account.sign_transaction(_signable(tx), key)
        return {"raw": "0x" + bytes(signed.raw_transaction).hex(), "tx": tx}

    def eth_chainId(self) -> str:
        return hex(CHAIN_ID)

    def eth_getTransactionCount(self, address: str, block: str) -> str:
        return hex(self.nonces.get(address.lower(), 0))

    def eth_estimateGas(self, tx: dict[str, Any]) -> str:
        return hex(21000)

    def eth_maxPriorityFeePerGas(self) -> str:
        if not self.supports_priority_fee:
            raise NodeError(-32601, "the method eth_maxPriorityFeePerGas does not exist/is not available")
        return hex(1_000_000_000)

    def eth_getBlockByNumber(self, tag: str, full: bool) -> dict[str, Any]:
        return {"number": "0x10", "baseFeePerGas": hex(self.base_fee)}

    def eth_sendRawTransaction(self, raw: str) -> str:
        payload = bytes.fromhex(raw[2:])
        tx_hash = "0x" + keccak(payload).hex()
        sender = Account.recover_transaction(raw).lower()
        self.nonces[sender] = self.nonces.get(sender, 0) + 1
        self.sent[tx_hash] = payload
        return tx_hash

    def eth_getTransactionReceipt(self, tx_hash: str) -> Optional[dict[str, Any]]:
        if tx_hash not in self.sent or not self.mined:
            return None
        return {"transactionHash": tx_hash, "status": self.receipt_status, "blockNumber": "0x11"}


@pytest.fixture()
def node() -> FakeNode:
    fake = FakeNode()
    fake.add_account(DEV_KEY, "")
    return fake


@pytest.fixture()
def rpc(node: FakeNode) -> RpcClient:
    client = RpcClient(node, timeout=2.0)
    yield client
    client.close()


@pytest.fixture()
def personal(rpc: RpcClient) -> PersonalClient:
    return PersonalClient(rpc, backend="geth")

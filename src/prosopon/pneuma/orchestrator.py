"""
Signing Orchestrator - unlock -> sign -> send, one transaction at a time.

Lifecycle:

    BUILT --unlock--> UNLOCKED --sign--> SIGNED --send--> SENT --wait--> CONFIRMED | FAILED
      \\________________sign______________/

A signed payload is final.  A failed submission leaves it SIGNED so the
same bytes can be resubmitted; signing again needs a freshly built
transaction so nonce and signature stay consistent.

The signing mode is chosen once per orchestrator:
- NodeManaged: the node holds the key (personal_* / eth_sign*)
- LocalKey:    eth-account signs in process (RFC 6979 deterministic ECDSA)
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from eth_account import Account

from ..errors import (
    InvalidFieldError,
    InvalidTransitionError,
    MalformedHexError,
    ProsoponError,
    SigningError,
    SubmissionError,
    UnlockError,
)
from ..sigil import eth
from ..sigil.codec import encode_hex, message_bytes, normalize_private_key, to_checksum_address
from .personal import PersonalClient
from .tx import SignedTransaction, TransactionBuilder, UnsignedTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeManaged:
    """Key lives in the node's keystore."""

    address: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", to_checksum_address(self.address))


@dataclass(frozen=True)
class LocalKey:
    """Key held in process."""

    private_key: str = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "private_key", normalize_private_key(self.private_key))

    @property
    def address(self) -> str:
        return eth.get_address(self.private_key)


SigningMode = Union[NodeManaged, LocalKey]


class TxState(str, enum.Enum):
    BUILT = "built"
    UNLOCKED = "unlocked"
    SIGNED = "signed"
    SENT = "sent"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TransactionLifecycle:
    """State machine for a single built transaction.  Not thread-safe."""

    def __init__(self, orchestrator: "SigningOrchestrator", tx: UnsignedTransaction) -> None:
        self._orchestrator = orchestrator
        self.tx = tx
        self.state = TxState.BUILT
        self.signed: Optional[SignedTransaction] = None
        self.tx_hash: Optional[str] = None
        self.receipt: Optional[dict[str, Any]] = None

    def _require(self, *states: TxState, action: str) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransitionError(
                f"Cannot {action} a transaction in state '{self.state.value}' (allowed: {allowed})"
            )

    def _move(self, state: TxState) -> None:
        logger.info(
            "tx nonce=%d from=%s: %s -> %s%s",
            self.tx.nonce,
            self.tx.from_,
            self.state.value,
            state.value,
            f" ({self.tx_hash or self.signed.hash})" if self.signed else "",
        )
        self.state = state

    def unlock(self, passphrase: str, duration: Optional[int] = None) -> None:
        """
        Unlock the sending account on the node.

        Raises:
            UnlockError: Local-key mode, node refusal, or RPC failure
        """
        self._require(TxState.BUILT, TxState.UNLOCKED, action="unlock")
        mode = self._orchestrator.mode
        if not isinstance(mode, NodeManaged):
            raise UnlockError("Local-key accounts have no node-side lock")
        try:
            unlocked = self._orchestrator.personal.unlock_account(mode.address, passphrase, duration)
        except ProsoponError as exc:
            raise UnlockError(f"Unlocking {mode.address} failed: {exc}") from exc
        if not unlocked:
            raise UnlockError(f"Node refused to unlock {mode.address}")
        self._move(TxState.UNLOCKED)

    def sign(self, passphrase: Optional[str] = None) -> SignedTransaction:
        """
        Produce the signed payload.

        Node mode signs with ``passphrase`` if given, otherwise requires a
        prior ``unlock``.  The passphrase is ignored in local-key mode.
        """
        self._require(TxState.BUILT, TxState.UNLOCKED, action="sign")
        mode = self._orchestrator.mode
        if isinstance(mode, LocalKey):
            signed = self._sign_local(mode)
        else:
            signed = self._sign_node(mode, passphrase)

        try:
            sender = to_checksum_address(Account.recover_transaction(signed.raw))
        except Exception as exc:
            raise SigningError(f"Signed payload is not a valid transaction: {exc}") from exc
        if sender != self.tx.from_:
            raise SigningError(f"Signed payload recovers to {sender}, expected {self.tx.from_}")

        self.signed = signed
        self._move(TxState.SIGNED)
        return signed

    def _sign_local(self, mode: LocalKey) -> SignedTransaction:
        try:
            raw, _ = eth.sign_transaction(self.tx.to_signable(), mode.private_key)
        except (TypeError, ValueError) as exc:
            raise SigningError(f"Local signing failed: {exc}") from exc
        return SignedTransaction(raw=raw)

    def _sign_node(self, mode: NodeManaged, passphrase: Optional[str]) -> SignedTransaction:
        personal = self._orchestrator.personal
        try:
            if passphrase is not None:
                raw_hex = personal.sign_transaction(self.tx, passphrase)
            elif self.state is TxState.UNLOCKED:
                result = personal.rpc.call("eth_signTransaction", [self.tx.to_rpc()])
                raw_hex = result.get("raw") if isinstance(result, dict) else result
            else:
                raise SigningError(
                    f"{mode.address} is not unlocked; unlock first or pass a passphrase"
                )
            return SignedTransaction.from_hex(raw_hex)
        except SigningError:
            raise
        except ProsoponError as exc:
            raise SigningError(f"Node signing failed: {exc}") from exc

    def send(self) -> str:
        """
        Broadcast the signed payload.  Safe to call again after a failure.

        Returns:
            Transaction hash
        """
        self._require(TxState.SIGNED, action="send")
        if self.signed is None:
            raise InvalidTransitionError("Cannot send: no signed payload recorded")
        try:
            tx_hash = self._orchestrator.personal.rpc.send_raw_transaction(self.signed.raw_hex)
        except ProsoponError as exc:
            raise SubmissionError(f"Submitting {self.signed.hash} failed: {exc}") from exc
        if not isinstance(tx_hash, str) or tx_hash.lower() != self.signed.hash:
            raise SubmissionError(f"Node returned hash {tx_hash!r}, expected {self.signed.hash}")
        self.tx_hash = tx_hash
        self._move(TxState.SENT)
        return tx_hash

    def wait(self, timeout: float = 120, poll_interval: float = 2.0) -> dict[str, Any]:
        """
        Poll for the receipt.

        Raises:
            RpcTimeoutError: No receipt in time; the state stays SENT
        """
        self._require(TxState.SENT, action="wait for")
        if self.tx_hash is None:
            raise InvalidTransitionError("Cannot wait for a receipt: no transaction hash recorded")
        receipt = self._orchestrator.personal.rpc.wait_for_receipt(
            self.tx_hash, timeout=timeout, poll_interval=poll_interval
        )
        self.receipt = receipt
        status = int(receipt.get("status") or "0x0", 16)
        self._move(TxState.CONFIRMED if status == 1 else TxState.FAILED)
        return receipt


class SigningOrchestrator:
    """
    Args:
        personal: Personal namespace client (carries the RPC client)
        mode: NodeManaged(address) or LocalKey(private_key)
        builder: Transaction builder (default: one over ``personal.rpc``)
    """

    def __init__(
        self,
        personal: PersonalClient,
        mode: SigningMode,
        builder: Optional[TransactionBuilder] = None,
    ) -> None:
        self.personal = personal
        self.mode = mode
        self.builder = builder or TransactionBuilder(personal.rpc)

    @property
    def address(self) -> str:
        return self.mode.address

    def prepare(self, fields: Mapping[str, Any]) -> TransactionLifecycle:
        """Build a transaction from this signer.  ``from`` defaults to the signer."""
        fields = dict(fields)
        sender = fields.pop("from_", None) or fields.get("from") or self.address
        fields["from"] = sender
        try:
            checksummed = to_checksum_address(sender)
        except MalformedHexError as exc:
            raise InvalidFieldError("from", str(exc)) from exc
        if checksummed != self.address:
            raise SigningError(f"Transaction sender {sender} does not match signer {self.address}")
        return TransactionLifecycle(self, self.builder.build(fields))

    def sign_message(self, message: Union[str, bytes], passphrase: Optional[str] = None) -> str:
        """
        EIP-191 signature over ``message``.

        Node mode without a passphrase uses eth_sign, which needs the account
        unlocked.
        """
        mode = self.mode
        if isinstance(mode, LocalKey):
            return eth.sign_message(message, mode.private_key)
        try:
            if passphrase is not None:
                return self.personal.sign(message, mode.address, passphrase)
            return self.personal.rpc.call(
                "eth_sign", [mode.address, encode_hex(message_bytes(message))]
            )
        except ProsoponError as exc:
            raise SigningError(f"Signing message with {mode.address} failed: {exc}") from exc

    def recover(self, message: Union[str, bytes], signature: str) -> str:
        return eth.recover_message(message, signature)

    def sign_and_send(
        self,
        fields: Mapping[str, Any],
        passphrase: Optional[str] = None,
        wait: bool = False,
        timeout: float = 120,
    ) -> TransactionLifecycle:
        """Build, sign and submit in one go.  Returns the lifecycle for inspection."""
        lifecycle = self.prepare(fields)
        lifecycle.sign(passphrase)
        lifecycle.send()
        if wait:
            lifecycle.wait(timeout=timeout)
        return lifecycle

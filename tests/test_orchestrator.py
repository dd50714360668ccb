"""Tests for the unlock -> sign -> send lifecycle."""

from __future__ import annotations

import logging
import re

import pytest
from eth_account import Account

from prosopon.errors import (
    InvalidFieldError,
    InvalidTransitionError,
    RpcTimeoutError,
    SigningError,
    SubmissionError,
    UnlockError,
)
from prosopon.pneuma.orchestrator import (
    LocalKey,
    NodeManaged,
    SigningOrchestrator,
    TxState,
)
from prosopon.pneuma.personal import PersonalClient
from prosopon.pneuma.tx import TransactionBuilder
from prosopon.sigil.codec import to_checksum_address

from conftest import CHAIN_ID, DEV_ADDRESS, DEV_KEY, RECIPIENT, FakeNode, NodeError

# RLP of the unsigned fields below: chainId, nonce, tip, maxFee, gas, to, value, data, accessList
UNSIGNED_BODY = "82053980841dcd65008459682f00825208946e599da0bff7a6598ac1224e4985430bf16458a482271080c0"

TX_FIELDS = {
    "to": RECIPIENT,
    "value": 10000,
    "gas": 21000,
    "maxFeePerGas": 1_500_000_000,
    "maxPriorityFeePerGas": 500_000_000,
    "nonce": 0,
    "chainId": CHAIN_ID,
}


@pytest.fixture()
def builder(personal: PersonalClient) -> TransactionBuilder:
    return TransactionBuilder(personal.rpc, chain_id=CHAIN_ID)


@pytest.fixture()
def local(personal: PersonalClient, builder: TransactionBuilder) -> SigningOrchestrator:
    return SigningOrchestrator(personal, LocalKey(DEV_KEY), builder)


@pytest.fixture()
def managed(personal: PersonalClient, builder: TransactionBuilder) -> SigningOrchestrator:
    return SigningOrchestrator(personal, NodeManaged(DEV_ADDRESS.lower()), builder)


class TestModes:
    def test_node_managed_checksums(self) -> None:
        assert NodeManaged(DEV_ADDRESS.lower()).address == DEV_ADDRESS

    def test_local_key_hides_secret(self) -> None:
        mode = LocalKey(DEV_KEY[2:])
        assert mode.address == DEV_ADDRESS
        assert mode.private_key == DEV_KEY
        assert DEV_KEY[2:] not in repr(mode)


class TestLocalSigning:
    def test_signing_is_deterministic(self, local: SigningOrchestrator) -> None:
        first = local.prepare(TX_FIELDS).sign()
        second = local.prepare(TX_FIELDS).sign()
        assert first.raw == second.raw
        # type 2, list length 0x6e, unsigned body, y-parity, 32-byte r and s
        assert re.fullmatch("0x02f86e" + UNSIGNED_BODY + "(80|01)a0[0-9a-f]{64}a0[0-9a-f]{64}", first.raw_hex)
        assert to_checksum_address(Account.recover_transaction(first.raw)) == DEV_ADDRESS

    def test_sign_send_confirm(self, local: SigningOrchestrator, node: FakeNode) -> None:
        lifecycle = local.sign_and_send(TX_FIELDS, wait=True, timeout=1)
        assert lifecycle.state is TxState.CONFIRMED
        assert lifecycle.tx_hash == lifecycle.signed.hash
        assert lifecycle.receipt["status"] == "0x1"
        assert node.nonces[DEV_ADDRESS.lower()] == 1

    def test_reverted_receipt(self, local: SigningOrchestrator, node: FakeNode) -> None:
        node.receipt_status = "0x0"
        lifecycle = local.sign_and_send(TX_FIELDS, wait=True, timeout=1)
        assert lifecycle.state is TxState.FAILED

    def test_unlock_is_not_available(self, local: SigningOrchestrator) -> None:
        lifecycle = local.prepare(TX_FIELDS)
        with pytest.raises(UnlockError):
            lifecycle.unlock("")
        assert lifecycle.state is TxState.BUILT

    def test_message_round_trip(self, local: SigningOrchestrator, node: FakeNode) -> None:
        signature = local.sign_message("0xdeadbeaf")
        assert local.recover("0xdeadbeaf", signature) == DEV_ADDRESS
        assert node.requests == []

    def test_sender_must_match_signer(self, local: SigningOrchestrator) -> None:
        with pytest.raises(SigningError, match="does not match"):
            local.prepare({**TX_FIELDS, "from": RECIPIENT})

    def test_from_alias_is_honoured(self, local: SigningOrchestrator) -> None:
        lifecycle = local.prepare({**TX_FIELDS, "from_": DEV_ADDRESS.lower()})
        assert lifecycle.tx.from_ == DEV_ADDRESS

    @pytest.mark.parametrize("sender", ["0xnothex", "0x1234", 42])
    def test_malformed_sender_is_invalid_field(self, local: SigningOrchestrator, node: FakeNode, sender) -> None:
        with pytest.raises(InvalidFieldError) as excinfo:
            local.prepare({**TX_FIELDS, "from": sender})
        assert excinfo.value.field == "from"
        assert excinfo.value.exit_code == 2
        assert node.requests == []


class TestNodeSigning:
    def test_unlock_then_sign_without_passphrase(self, managed: SigningOrchestrator, node: FakeNode) -> None:
        lifecycle = managed.prepare(TX_FIELDS)
        lifecycle.unlock("", 10000)
        assert lifecycle.state is TxState.UNLOCKED

        signed = lifecycle.sign()
        assert lifecycle.state is TxState.SIGNED
        assert "eth_signTransaction" in node.methods()
        assert UNSIGNED_BODY in signed.raw_hex

    def test_node_and_local_agree(self, managed: SigningOrchestrator, local: SigningOrchestrator) -> None:
        node_signed = managed.prepare(TX_FIELDS).sign(passphrase="")
        local_signed = local.prepare(TX_FIELDS).sign()
        assert node_signed.raw == local_signed.raw

    def test_sign_requires_unlock_or_passphrase(self, managed: SigningOrchestrator) -> None:
        lifecycle = managed.prepare(TX_FIELDS)
        with pytest.raises(SigningError, match="not unlocked"):
            lifecycle.sign()
        assert lifecycle.state is TxState.BUILT

    def test_unlock_refused(self, managed: SigningOrchestrator, node: FakeNode) -> None:
        node.overrides["personal_unlockAccount"] = lambda address, passphrase, duration=None: False
        lifecycle = managed.prepare(TX_FIELDS)
        with pytest.raises(UnlockError, match="refused"):
            lifecycle.unlock("")
        assert lifecycle.state is TxState.BUILT

    def test_unlock_wrong_passphrase(self, managed: SigningOrchestrator) -> None:
        lifecycle = managed.prepare(TX_FIELDS)
        with pytest.raises(UnlockError, match="could not decrypt"):
            lifecycle.unlock("wrong")

    def test_node_signs_for_someone_else(self, managed: SigningOrchestrator, node: FakeNode) -> None:
        other_key = "0x" + "11" * 32

        def sign_transaction(tx: dict, passphrase: str) -> dict:
            return node.personal_signTransaction({**tx, "from": node.add_account(other_key)}, "")

        node.overrides["personal_signTransaction"] = sign_transaction
        lifecycle = managed.prepare(TX_FIELDS)
        with pytest.raises(SigningError, match="recovers to"):
            lifecycle.sign(passphrase="")
        assert lifecycle.state is TxState.BUILT

    def test_garbage_payload(self, managed: SigningOrchestrator, node: FakeNode) -> None:
        node.overrides["personal_signTransaction"] = lambda tx, passphrase: {"raw": "0x02c0"}
        with pytest.raises(SigningError):
            managed.prepare(TX_FIELDS).sign(passphrase="")

    def test_message_with_passphrase_and_unlocked(self, managed: SigningOrchestrator, node: FakeNode) -> None:
        with_passphrase = managed.sign_message("0xdeadbeaf", passphrase="")
        managed.personal.unlock_account(DEV_ADDRESS, "")
        unlocked = managed.sign_message("0xdeadbeaf")
        assert with_passphrase == unlocked
        assert node.last("eth_sign")["params"] == [DEV_ADDRESS, "0xdeadbeaf"]

    def test_message_on_locked_account(self, managed: SigningOrchestrator) -> None:
        with pytest.raises(SigningError, match="authentication needed"):
            managed.sign_message("0xdeadbeaf")


class TestTransitions:
    def test_cannot_send_unsigned(self, local: SigningOrchestrator) -> None:
        lifecycle = local.prepare(TX_FIELDS)
        with pytest.raises(InvalidTransitionError):
            lifecycle.send()

    def test_cannot_sign_twice(self, local: SigningOrchestrator) -> None:
        lifecycle = local.prepare(TX_FIELDS)
        lifecycle.sign()
        with pytest.raises(InvalidTransitionError):
            lifecycle.sign()

    def test_cannot_wait_before_send(self, local: SigningOrchestrator) -> None:
        lifecycle = local.prepare(TX_FIELDS)
        lifecycle.sign()
        with pytest.raises(InvalidTransitionError):
            lifecycle.wait(timeout=0.01)

    def test_invalid_transition_is_signing_error(self) -> None:
        assert issubclass(InvalidTransitionError, SigningError)

    def test_failed_submission_can_be_retried(self, local: SigningOrchestrator, node: FakeNode) -> None:
        calls = {"n": 0}

        def flaky(raw: str) -> str:
            calls["n"] += 1
            if calls["n"] == 1:
                raise NodeError(-32000, "txpool is full")
            return FakeNode.eth_sendRawTransaction(node, raw)

        node.overrides["eth_sendRawTransaction"] = flaky
        lifecycle = local.prepare(TX_FIELDS)
        signed = lifecycle.sign()

        with pytest.raises(SubmissionError, match="txpool is full"):
            lifecycle.send()
        assert lifecycle.state is TxState.SIGNED

        assert lifecycle.send() == signed.hash
        assert lifecycle.state is TxState.SENT
        assert lifecycle.signed is signed

    def test_hash_mismatch(self, local: SigningOrchestrator, node: FakeNode) -> None:
        node.overrides["eth_sendRawTransaction"] = lambda raw: "0x" + "00" * 32
        lifecycle = local.prepare(TX_FIELDS)
        lifecycle.sign()
        with pytest.raises(SubmissionError, match="expected"):
            lifecycle.send()
        assert lifecycle.state is TxState.SIGNED

    def test_wait_timeout_keeps_sent(self, local: SigningOrchestrator, node: FakeNode) -> None:
        node.mined = False
        lifecycle = local.sign_and_send(TX_FIELDS)
        with pytest.raises(RpcTimeoutError):
            lifecycle.wait(timeout=0.05, poll_interval=0.01)
        assert lifecycle.state is TxState.SENT

    def test_transitions_are_logged(
        self, local: SigningOrchestrator, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.INFO, logger="prosopon")
        local.sign_and_send(TX_FIELDS)
        messages = [r.getMessage() for r in caplog.records if r.name == "prosopon.pneuma.orchestrator"]
        assert any("built -> signed" in m for m in messages)
        assert any("signed -> sent" in m for m in messages)

    def test_signed_state_without_payload_is_rejected(self, local: SigningOrchestrator) -> None:
        lifecycle = local.prepare(TX_FIELDS)
        lifecycle.state = TxState.SIGNED
        with pytest.raises(InvalidTransitionError, match="no signed payload"):
            lifecycle.send()

    def test_sent_state_without_hash_is_rejected(self, local: SigningOrchestrator, node: FakeNode) -> None:
        lifecycle = local.prepare(TX_FIELDS)
        lifecycle.state = TxState.SENT
        with pytest.raises(InvalidTransitionError, match="no transaction hash"):
            lifecycle.wait(timeout=0.01)
        assert "eth_getTransactionReceipt" not in node.methods()

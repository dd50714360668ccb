"""
Transact - Build, sign, and optionally broadcast EIP-1559 transactions.

Missing fields (nonce, gas, fees, chain ID) are filled from the node.
"""

from __future__ import annotations

import sys
from typing import Any, Optional

import click

from ..config import get_chain_id
from ..errors import ProsoponError
from ..pneuma.orchestrator import LocalKey, NodeManaged, SigningOrchestrator, TxState
from ..pneuma.tx import TransactionBuilder
from ..sigil.eth import load_private_key
from .common import fail, personal_client, rpc_url_option, timeout_option


def _tx_options(func):
    options = [
        click.option("--from", "sender", default=None, help="Sender (keystore account; omit with --local)"),
        click.option("--to", default=None, help="Recipient address"),
        click.option("--value", default=None, help="Value in wei (decimal or 0x-hex)"),
        click.option("--gas", default=None, help="Gas limit"),
        click.option("--max-fee-per-gas", default=None, help="Fee cap in wei"),
        click.option("--max-priority-fee-per-gas", default=None, help="Tip in wei"),
        click.option("--nonce", default=None, help="Nonce (default: read from node)"),
        click.option("--data", default=None, help="0x-hex calldata"),
        click.option("--local", "use_local", is_flag=True, help="Sign with the local PRIVATE_KEY"),
        click.option("--passphrase", envvar="PROSOPON_PASSPHRASE", default=None, help="Keystore passphrase"),
        rpc_url_option,
        timeout_option,
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _fields(**kwargs: Optional[str]) -> dict[str, Any]:
    names = {
        "sender": "from",
        "max_fee_per_gas": "maxFeePerGas",
        "max_priority_fee_per_gas": "maxPriorityFeePerGas",
    }
    return {names.get(k, k): v for k, v in kwargs.items() if v is not None}


def _run(
    fields: dict[str, Any],
    use_local: bool,
    passphrase: Optional[str],
    rpc_url: str,
    timeout: Optional[float],
    send: bool,
    wait: bool = False,
) -> None:
    if use_local:
        try:
            mode = LocalKey(load_private_key())
        except ProsoponError as exc:
            fail(exc)
        except ValueError as exc:
            click.secho(f"ERROR: {exc}", fg="red", err=True)
            sys.exit(1)
    else:
        if "from" not in fields:
            click.secho("ERROR: --from is required unless --local is given", fg="red", err=True)
            sys.exit(2)
        if passphrase is None:
            passphrase = click.prompt("Passphrase", hide_input=True, default="", show_default=False)

    with personal_client(rpc_url, timeout) as personal:
        if not use_local:
            mode = NodeManaged(fields["from"])
        builder = TransactionBuilder(personal.rpc, chain_id=get_chain_id())
        orchestrator = SigningOrchestrator(personal, mode, builder=builder)
        lifecycle = orchestrator.prepare(fields)
        signed = lifecycle.sign(passphrase)
        if not send:
            click.echo(signed.raw_hex)
            return
        tx_hash = lifecycle.send()
        click.echo(tx_hash)
        if wait:
            lifecycle.wait()

    if wait:
        color = "green" if lifecycle.state is TxState.CONFIRMED else "red"
        click.secho(f"status: {lifecycle.state.value}", fg=color)
        if lifecycle.state is TxState.FAILED:
            sys.exit(1)


@click.command("sign-tx")
@_tx_options
def sign_tx(use_local: bool, passphrase: Optional[str], rpc_url: str, timeout: Optional[float], **kwargs: Optional[str]) -> None:
    """Sign a transaction and print the raw payload without sending it."""
    _run(_fields(**kwargs), use_local, passphrase, rpc_url, timeout, send=False)


@click.command("send-tx")
@_tx_options
@click.option("--wait", is_flag=True, help="Wait for the receipt")
def send_tx(
    use_local: bool,
    passphrase: Optional[str],
    rpc_url: str,
    timeout: Optional[float],
    wait: bool,
    **kwargs: Optional[str],
) -> None:
    """Sign and broadcast a transaction, printing its hash."""
    _run(_fields(**kwargs), use_local, passphrase, rpc_url, timeout, send=True, wait=wait)

"""
Message - EIP-191 signing and signer recovery.

Signs with a node keystore account by default, or with the local
PRIVATE_KEY when --local is given.
"""

from __future__ import annotations

import sys
from typing import Optional

import click

from ..errors import ProsoponError
from ..sigil.eth import get_address, load_private_key, recover_message, sign_message
from .common import fail, personal_client, rpc_url_option, timeout_option


@click.command("sign")
@click.argument("message")
@click.option("--address", default=None, help="Keystore account to sign with")
@click.option("--passphrase", envvar="PROSOPON_PASSPHRASE", default=None, help="Keystore passphrase")
@click.option("--local", "use_local", is_flag=True, help="Sign with the local PRIVATE_KEY")
@rpc_url_option
@timeout_option
def sign(
    message: str,
    address: Optional[str],
    passphrase: Optional[str],
    use_local: bool,
    rpc_url: str,
    timeout: Optional[float],
) -> None:
    """Sign MESSAGE (0x-hex or text)."""
    if use_local:
        try:
            signature = sign_message(message, load_private_key())
        except ProsoponError as exc:
            fail(exc)
        except ValueError as exc:
            click.secho(f"ERROR: {exc}", fg="red", err=True)
            sys.exit(1)
        click.echo(signature)
        return

    if not address:
        click.secho("ERROR: --address is required unless --local is given", fg="red", err=True)
        sys.exit(2)
    if passphrase is None:
        passphrase = click.prompt("Passphrase", hide_input=True, default="", show_default=False)

    with personal_client(rpc_url, timeout) as personal:
        signature = personal.sign(message, address, passphrase)
    click.echo(signature)


@click.command("ec-recover")
@click.argument("message")
@click.argument("signature")
@click.option("--local", "use_local", is_flag=True, help="Recover in process instead of asking the node")
@rpc_url_option
@timeout_option
def ec_recover(
    message: str,
    signature: str,
    use_local: bool,
    rpc_url: str,
    timeout: Optional[float],
) -> None:
    """Recover the address that signed MESSAGE with SIGNATURE."""
    if use_local:
        try:
            click.echo(recover_message(message, signature))
        except ProsoponError as exc:
            fail(exc)
        return

    with personal_client(rpc_url, timeout) as personal:
        address = personal.ec_recover(message, signature)
    click.echo(address)


@click.command("whoami")
def whoami() -> None:
    """Show the address of the local PRIVATE_KEY."""
    try:
        click.echo(f"Address: {get_address(load_private_key())}")
    except (ValueError, FileNotFoundError):
        click.echo("No local key found.")
        click.echo("Set PRIVATE_KEY in the environment or in ~/.prosopon/.env.")
        sys.exit(1)

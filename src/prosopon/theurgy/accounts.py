"""
Accounts - Keystore management on the node.

new-account, accounts, lock, unlock, import-raw-key.
"""

from __future__ import annotations

from typing import Optional

import click

from ..errors import UnlockError
from .common import fail, passphrase_option, personal_client, rpc_url_option, timeout_option


@click.command("new-account")
@passphrase_option
@rpc_url_option
@timeout_option
def new_account(passphrase: str, rpc_url: str, timeout: Optional[float]) -> None:
    """Create a new account in the node's keystore."""
    with personal_client(rpc_url, timeout) as personal:
        address = personal.new_account(passphrase)
    click.echo(address)


@click.command("accounts")
@rpc_url_option
@timeout_option
def accounts(rpc_url: str, timeout: Optional[float]) -> None:
    """List keystore accounts."""
    with personal_client(rpc_url, timeout) as personal:
        addresses = personal.get_accounts()
    for address in addresses:
        click.echo(address)


@click.command("lock")
@click.argument("address")
@rpc_url_option
@timeout_option
def lock(address: str, rpc_url: str, timeout: Optional[float]) -> None:
    """Lock ADDRESS."""
    with personal_client(rpc_url, timeout) as personal:
        locked = personal.lock_account(address)
    click.echo("locked" if locked else "not locked")


@click.command("unlock")
@click.argument("address")
@passphrase_option
@click.option("--duration", type=int, default=None, help="Seconds to stay unlocked")
@rpc_url_option
@timeout_option
def unlock(
    address: str,
    passphrase: str,
    duration: Optional[int],
    rpc_url: str,
    timeout: Optional[float],
) -> None:
    """Unlock ADDRESS for signing."""
    with personal_client(rpc_url, timeout) as personal:
        unlocked = personal.unlock_account(address, passphrase, duration)
    if unlocked:
        click.secho("unlocked", fg="green")
    else:
        fail(UnlockError(f"Node refused to unlock {address}"))


@click.command("import-raw-key")
@click.argument("private_key", envvar="PRIVATE_KEY")
@passphrase_option
@rpc_url_option
@timeout_option
def import_raw_key(private_key: str, passphrase: str, rpc_url: str, timeout: Optional[float]) -> None:
    """Import PRIVATE_KEY (hex, 0x optional) into the node's keystore."""
    with personal_client(rpc_url, timeout) as personal:
        address = personal.import_raw_key(private_key, passphrase)
    click.echo(address)

"""
Prosopon CLI

Command-line interface for the node's personal account namespace.

Commands:
  new-account     - Create a keystore account on the node
  accounts        - List keystore accounts
  lock            - Lock an account
  unlock          - Unlock an account for a duration
  import-raw-key  - Import a raw private key into the keystore
  sign            - EIP-191 sign a message (node or local key)
  ec-recover      - Recover the signer of a message
  sign-tx         - Build and sign a transaction
  send-tx         - Build, sign and broadcast a transaction
  whoami          - Show the local key's address
"""

from __future__ import annotations

import logging

import click

from .config import load_env
from .logging import setup_logging

# ============ Constants ============

VERSION = "0.3.0"


# ============ Main CLI Group ============


@click.group()
@click.version_option(version=VERSION, prog_name="prosopon")
@click.option("-v", "--verbose", is_flag=True, help="Log RPC traffic (DEBUG)")
def cli(verbose: bool) -> None:
    """Prosopon: personal account client for Ethereum nodes."""
    load_env()
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING)


# ============ Commands ============

from .theurgy.accounts import accounts, import_raw_key, lock, new_account, unlock
from .theurgy.message import ec_recover, sign, whoami
from .theurgy.transact import send_tx, sign_tx

cli.add_command(new_account)
cli.add_command(accounts)
cli.add_command(lock)
cli.add_command(unlock)
cli.add_command(import_raw_key)
cli.add_command(sign)
cli.add_command(ec_recover)
cli.add_command(sign_tx)
cli.add_command(send_tx)
cli.add_command(whoami)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

"""Shared options and plumbing for the CLI commands."""

from __future__ import annotations

import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import click

from ..config import DEFAULT_RPC_URL, get_backend
from ..errors import ProsoponError
from ..pneuma.personal import PersonalClient
from ..pneuma.rpc import RpcClient

rpc_url_option = click.option(
    "--rpc-url",
    envvar="PROSOPON_RPC_URL",
    default=DEFAULT_RPC_URL,
    show_default=True,
    help="Node JSON-RPC endpoint",
)

timeout_option = click.option(
    "--timeout",
    envvar="PROSOPON_RPC_TIMEOUT",
    type=float,
    default=None,
    help="Per-call deadline in seconds",
)

passphrase_option = click.option(
    "--passphrase",
    envvar="PROSOPON_PASSPHRASE",
    prompt=True,
    hide_input=True,
    help="Keystore passphrase",
)


def open_rpc(rpc_url: str, timeout: Optional[float] = None) -> RpcClient:
    return RpcClient.from_url(rpc_url, timeout=timeout)


@contextmanager
def personal_client(rpc_url: str, timeout: Optional[float] = None) -> Iterator[PersonalClient]:
    """Yield a PersonalClient; Prosopon errors become a red message and an exit code."""
    try:
        rpc = open_rpc(rpc_url, timeout)
        with rpc:
            yield PersonalClient(rpc, backend=get_backend())
    except ProsoponError as exc:
        fail(exc)
    except ValueError as exc:
        click.secho(f"ERROR: {exc}", fg="red", err=True)
        sys.exit(2)


def fail(exc: ProsoponError) -> None:
    click.secho(f"ERROR: {exc}", fg="red", err=True)
    sys.exit(exc.exit_code)

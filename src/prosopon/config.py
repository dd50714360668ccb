"""
Runtime configuration.

Values come from the process environment, optionally seeded from
~/.prosopon/.env.  CLI options override them via click's ``envvar``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .sigil.eth import PROSOPON_ENV

DEFAULT_RPC_URL = "http://127.0.0.1:8545"
DEFAULT_RPC_TIMEOUT = 30.0
DEFAULT_BACKEND = "geth"

# 2.5 gwei tip used when the node does not implement eth_maxPriorityFeePerGas
DEFAULT_PRIORITY_FEE = 2_500_000_000

KNOWN_BACKENDS = ("geth", "ganache", "hardhat", "anvil")


def load_env(env_path: Optional[Path] = None) -> None:
    """Seed os.environ from the dotenv file without overriding set values."""
    env_path = env_path or PROSOPON_ENV
    if env_path.exists():
        load_dotenv(env_path, override=False)


def get_rpc_url() -> str:
    """Get the RPC URL from environment or default."""
    return os.environ.get("PROSOPON_RPC_URL", DEFAULT_RPC_URL)


def get_rpc_timeout() -> float:
    """Per-call deadline in seconds."""
    return float(os.environ.get("PROSOPON_RPC_TIMEOUT", str(DEFAULT_RPC_TIMEOUT)))


def get_chain_id() -> Optional[int]:
    """Configured chain ID, or None to ask the node (eth_chainId)."""
    raw = os.environ.get("PROSOPON_CHAIN_ID")
    if not raw:
        return None
    try:
        return int(raw, 0)
    except ValueError:
        raise ValueError(
            f"Invalid PROSOPON_CHAIN_ID {raw!r}; expected a decimal or 0x-hex integer"
        ) from None


def get_backend() -> str:
    backend = os.environ.get("PROSOPON_BACKEND", DEFAULT_BACKEND).strip().lower()
    if backend not in KNOWN_BACKENDS:
        raise ValueError(
            f"Unknown PROSOPON_BACKEND {backend!r}; expected one of {', '.join(KNOWN_BACKENDS)}"
        )
    return backend

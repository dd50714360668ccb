"""
Error taxonomy for the Prosopon client.

Every failure path raises one of these.  ``exit_code`` is what the CLI
exits with when the error reaches the top level.
"""

from __future__ import annotations

from typing import Any, Optional


class ProsoponError(RuntimeError):
    exit_code: int = 1


class MalformedHexError(ProsoponError, ValueError):
    exit_code = 2


class InvalidFieldError(ProsoponError, ValueError):
    exit_code = 2

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Invalid transaction field '{field}': {reason}")
        self.field = field
        self.reason = reason


class TransportError(ProsoponError):
    """Channel failure.  Safe for the caller to retry."""

    exit_code = 3

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        request_id: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.request_id = request_id


class RpcError(ProsoponError):
    """The node answered with a JSON-RPC error object."""

    exit_code = 4

    def __init__(
        self,
        code: Optional[int],
        message: str,
        data: Any = None,
        method: Optional[str] = None,
        params: Optional[list] = None,
        request_id: Optional[int] = None,
    ) -> None:
        super().__init__(f"RPC error {code} from {method}: {message}")
        self.code = code
        self.message = message
        self.data = data
        self.method = method
        self.params = params
        self.request_id = request_id


class RpcTimeoutError(ProsoponError, TimeoutError):
    """No response within the deadline.  The outcome on the node is unknown."""

    exit_code = 5

    def __init__(
        self,
        method: Optional[str],
        request_id: Optional[int],
        elapsed: float,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message or f"{method} (id={request_id}) timed out after {elapsed:.2f}s"
        )
        self.method = method
        self.request_id = request_id
        self.elapsed = elapsed


class UnlockError(ProsoponError):
    exit_code = 6


class SigningError(ProsoponError):
    exit_code = 7


class InvalidTransitionError(SigningError):
    pass


class SubmissionError(ProsoponError):
    exit_code = 8


__all__ = [
    "InvalidFieldError",
    "InvalidTransitionError",
    "MalformedHexError",
    "ProsoponError",
    "RpcError",
    "RpcTimeoutError",
    "SigningError",
    "SubmissionError",
    "TransportError",
    "UnlockError",
]

__all__ = [
    # Errors
    "ProsoponError",
    "MalformedHexError",
    "InvalidFieldError",
    "TransportError",
    "RpcError",
    "RpcTimeoutError",
    "UnlockError",
    "SigningError",
    "InvalidTransitionError",
    "SubmissionError",
    # Codec
    "decode_hex",
    "encode_hex",
    "is_address",
    "normalize_private_key",
    "to_checksum_address",
    # RPC
    "HttpTransport",
    "IpcTransport",
    "PendingCall",
    "RpcClient",
    # Transactions
    "SignedTransaction",
    "TransactionBuilder",
    "UnsignedTransaction",
    # Personal namespace
    "PersonalClient",
    # Orchestration
    "LocalKey",
    "NodeManaged",
    "SigningMode",
    "SigningOrchestrator",
    "TransactionLifecycle",
    "TxState",
]

from .errors import (
    InvalidFieldError,
    InvalidTransitionError,
    MalformedHexError,
    ProsoponError,
    RpcError,
    RpcTimeoutError,
    SigningError,
    SubmissionError,
    TransportError,
    UnlockError,
)
from .sigil.codec import (
    decode_hex,
    encode_hex,
    is_address,
    normalize_private_key,
    to_checksum_address,
)
from .pneuma.rpc import HttpTransport, IpcTransport, PendingCall, RpcClient
from .pneuma.tx import SignedTransaction, TransactionBuilder, UnsignedTransaction
from .pneuma.personal import PersonalClient
from .pneuma.orchestrator import (
    LocalKey,
    NodeManaged,
    SigningMode,
    SigningOrchestrator,
    TransactionLifecycle,
    TxState,
)

"""
JSON-RPC Client Core.

Requests are correlated with responses by id only.  Each call registers a
future in a per-client correlation table, hands the envelope to a
transport, and blocks on that future.  Transports deliver responses back
through ``RpcClient.deliver`` in any order and from any thread.

Two transports ship here: ``HttpTransport`` (httpx, delivers inline) and
``IpcTransport`` (geth IPC socket, delivers from a reader thread).
"""

from __future__ import annotations

import codecs
import itertools
import json
import logging
import socket
import threading
import time
from concurrent.futures import CancelledError, Future, InvalidStateError
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Union

import httpx

from ..config import get_rpc_timeout, get_rpc_url
from ..errors import ProsoponError, RpcError, RpcTimeoutError, TransportError
from ..sigil.codec import from_quantity, to_checksum_address, to_quantity
from ..spec.schemas import (
    SchemaRegistry,
    SchemaValidationError,
    validate_request,
    validate_response,
)

logger = logging.getLogger(__name__)

Deliver = Callable[[Any], None]

__all__ = [
    "CancelledError",
    "HttpTransport",
    "IpcTransport",
    "PendingCall",
    "RpcClient",
    "Transport",
]


class Transport(Protocol):
    def send(
        self,
        envelope: dict[str, Any],
        deliver: Deliver,
        timeout: Optional[float] = None,
    ) -> None:
        ...

    def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------


class HttpTransport:
    """
    One POST per request.  The response body is delivered before ``send``
    returns, so a per-call ``timeout`` is applied to the HTTP exchange
    itself and a response arriving after it is treated as a timeout.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

    def send(
        self,
        envelope: dict[str, Any],
        deliver: Deliver,
        timeout: Optional[float] = None,
    ) -> None:
        method = envelope.get("method")
        request_id = envelope.get("id")
        started = time.monotonic()
        try:
            response = self._client.post(
                self.url,
                json=envelope,
                timeout=httpx.USE_CLIENT_DEFAULT if timeout is None else timeout,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.ConnectTimeout as exc:
            raise TransportError(
                f"Connecting to {self.url} timed out", method, request_id
            ) from exc
        except httpx.TimeoutException as exc:
            raise RpcTimeoutError(method, request_id, time.monotonic() - started) from exc
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"HTTP {exc.response.status_code} from {self.url}: {exc.response.text[:200]}",
                method,
                request_id,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"HTTP request to {self.url} failed: {exc}", method, request_id) from exc
        except ValueError as exc:
            raise TransportError(f"Invalid JSON from {self.url}", method, request_id) from exc

        # httpx timeouts bound each phase, not the whole exchange
        elapsed = time.monotonic() - started
        if timeout is not None and elapsed > timeout:
            raise RpcTimeoutError(method, request_id, elapsed)
        deliver(body)

    def close(self) -> None:
        self._client.close()


class _StreamFramer:
    """
    Split a stream of back-to-back JSON documents into complete frames.

    Tracks bracket depth outside of strings, so a frame is known to be
    complete (and then either parses or is garbage) without waiting for
    more bytes.  Anything other than whitespace between documents, or a
    document that is not an object or array, raises ValueError.
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._depth = 0
        self._in_string = False
        self._escaped = False

    def feed(self, text: str) -> list[str]:
        frames: list[str] = []
        start = 0
        for i, ch in enumerate(text):
            if self._depth == 0:
                if ch.isspace():
                    start = i + 1
                    continue
                if ch not in "{[":
                    raise ValueError(f"unexpected {ch!r} between messages")
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif ch == "\\":
                    self._escaped = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch in "{[":
                self._depth += 1
            elif ch in "}]":
                self._depth -= 1
                if self._depth == 0:
                    self._parts.append(text[start : i + 1])
                    frames.append("".join(self._parts))
                    self._parts.clear()
                    start = i + 1
        if self._depth:
            self._parts.append(text[start:])
        return frames


class IpcTransport:
    """
    Persistent stream socket (geth ``geth.ipc``).

    Envelopes are written back to back; a reader thread decodes the
    concatenated JSON stream and delivers each message as it completes.
    """

    def __init__(self, sock: socket.socket, name: str = "ipc") -> None:
        self.name = name
        self._sock = sock
        self._send_lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None
        self._closed = threading.Event()
        self.on_disconnect: Optional[Callable[[TransportError], None]] = None

    @classmethod
    def connect(cls, path: Union[str, Path], timeout: float = 10.0) -> "IpcTransport":
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        try:
            sock.connect(str(path))
        except OSError as exc:
            sock.close()
            raise TransportError(f"Cannot connect to IPC socket {path}: {exc}") from exc
        sock.settimeout(None)
        return cls(sock, name=str(path))

    def send(
        self,
        envelope: dict[str, Any],
        deliver: Deliver,
        timeout: Optional[float] = None,
    ) -> None:
        # the deadline is enforced by the caller's future; writes do not block on replies
        if self._closed.is_set():
            raise TransportError(f"IPC socket {self.name} is closed", envelope.get("method"), envelope.get("id"))
        data = json.dumps(envelope, separators=(",", ":")).encode("utf-8")
        with self._send_lock:
            if self._reader is None:
                self._reader = threading.Thread(
                    target=self._read_loop,
                    args=(deliver,),
                    name="prosopon-ipc-reader",
                    daemon=True,
                )
                self._reader.start()
            try:
                self._sock.sendall(data)
            except OSError as exc:
                raise TransportError(
                    f"Write to IPC socket {self.name} failed: {exc}",
                    envelope.get("method"),
                    envelope.get("id"),
                ) from exc

    def _read_loop(self, deliver: Deliver) -> None:
        utf8 = codecs.getincrementaldecoder("utf-8")()
        framer = _StreamFramer()
        while not self._closed.is_set():
            try:
                chunk = self._sock.recv(65536)
            except OSError as exc:
                self._disconnected(f"read failed: {exc}")
                return
            if not chunk:
                self._disconnected("closed by peer")
                return
            try:
                frames = framer.feed(utf8.decode(chunk))
                messages = [json.loads(frame) for frame in frames]
            except (UnicodeDecodeError, ValueError) as exc:
                self._disconnected(f"sent malformed data ({exc})")
                return
            for message in messages:
                deliver(message)

    def _disconnected(self, reason: str) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        logger.warning("IPC socket %s %s", self.name, reason)
        if self.on_disconnect is not None:
            self.on_disconnect(TransportError(f"IPC socket {self.name} {reason}"))

    def close(self) -> None:
        self._closed.set()
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected
        self._sock.close()


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


@dataclass
class _Slot:
    method: str
    params: list
    future: Future
    started: float


class PendingCall:
    """Handle for one in-flight request."""

    def __init__(self, client: "RpcClient", request_id: int, slot: _Slot) -> None:
        self._client = client
        self.request_id = request_id
        self._slot = slot

    @property
    def method(self) -> str:
        return self._slot.method

    def done(self) -> bool:
        return self._slot.future.done()

    def cancelled(self) -> bool:
        return self._slot.future.cancelled()

    def cancel(self) -> bool:
        """
        Stop waiting for this response.  A late response is discarded.
        Node-side effects of the request are not undone.
        """
        self._client._take(self.request_id)
        cancelled = self._slot.future.cancel()
        if cancelled:
            logger.debug("Cancelled %s id=%d", self.method, self.request_id)
        return cancelled

    def result(self, timeout: Optional[float] = None) -> Any:
        """
        Block until the response arrives.

        Raises:
            RpcError: The node returned an error object
            TransportError: The channel failed or the response was malformed
            RpcTimeoutError: No response within ``timeout`` (client default if None)
            CancelledError: The call was cancelled
        """
        deadline = self._client.timeout if timeout is None else timeout
        try:
            return self._slot.future.result(timeout=deadline)
        except FutureTimeoutError as exc:
            if isinstance(exc, ProsoponError):
                raise
            self._client._take(self.request_id)
            self._slot.future.cancel()
            elapsed = time.monotonic() - self._slot.started
            logger.warning("%s id=%d timed out after %.2fs", self.method, self.request_id, elapsed)
            raise RpcTimeoutError(self.method, self.request_id, elapsed) from None


class RpcClient:
    """
    JSON-RPC 2.0 client.  Safe to share between threads.

    Args:
        transport: Channel that carries envelopes to the node
        timeout: Default per-call deadline in seconds
        registry: Schema registry used to validate responses
    """

    def __init__(
        self,
        transport: Transport,
        timeout: Optional[float] = None,
        registry: Optional[SchemaRegistry] = None,
    ) -> None:
        self._transport = transport
        self.timeout = get_rpc_timeout() if timeout is None else timeout
        self._registry = registry or SchemaRegistry.default()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._pending: dict[int, _Slot] = {}
        self._closed = False

    @classmethod
    def from_url(cls, url: Optional[str] = None, timeout: Optional[float] = None) -> "RpcClient":
        timeout = get_rpc_timeout() if timeout is None else timeout
        return cls(HttpTransport(url or get_rpc_url(), timeout=timeout), timeout=timeout)

    @classmethod
    def from_ipc(cls, path: Union[str, Path], timeout: Optional[float] = None) -> "RpcClient":
        transport = IpcTransport.connect(path)
        client = cls(transport, timeout=timeout)
        transport.on_disconnect = client.fail_pending
        return client

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ---- request path ----

    def submit(
        self,
        method: str,
        params: Optional[list] = None,
        timeout: Optional[float] = None,
    ) -> PendingCall:
        """
        Send a request without waiting for its response.

        ``timeout`` (client default if None) is handed to the transport;
        transports that answer inline use it as the deadline for the exchange.

        Raises:
            SchemaValidationError: The envelope is not a valid JSON-RPC 2.0 request
        """
        params = list(params or [])
        deadline = self.timeout if timeout is None else timeout
        with self._lock:
            if self._closed:
                raise TransportError("RPC client is closed", method)
            request_id = next(self._ids)
            envelope = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
            validate_request(envelope, self._registry)
            slot = _Slot(method=method, params=params, future=Future(), started=time.monotonic())
            self._pending[request_id] = slot

        logger.debug("-> %s id=%d", method, request_id)
        try:
            self._transport.send(envelope, self.deliver, deadline)
        except Exception:
            self._take(request_id)
            raise
        return PendingCall(self, request_id, slot)

    def call(self, method: str, params: Optional[list] = None, timeout: Optional[float] = None) -> Any:
        """
        Make a JSON-RPC call and block for its result.

        Args:
            method: RPC method name (e.g., "personal_unlockAccount")
            params: Positional RPC parameters
            timeout: Deadline in seconds (client default if None)

        Returns:
            Result field from the RPC response
        """
        return self.submit(method, params, timeout).result(timeout)

    # ---- response path ----

    def deliver(self, response: Any) -> None:
        """Resolve the pending call a response belongs to."""
        if isinstance(response, list):
            for item in response:
                self.deliver(item)
            return

        request_id = response.get("id") if isinstance(response, dict) else None
        try:
            validate_response(response, self._registry)
        except SchemaValidationError as exc:
            slot = self._take(request_id) if isinstance(request_id, int) else None
            if slot is None:
                logger.warning("Dropping malformed response: %s", "; ".join(exc.errors))
                return
            self._resolve(
                slot,
                exception=TransportError(
                    f"Malformed response to {slot.method}: {'; '.join(exc.errors)}",
                    slot.method,
                    request_id,
                ),
            )
            return

        slot = self._take(request_id) if isinstance(request_id, int) else None
        if slot is None:
            logger.debug("Discarding response for unknown id %r", request_id)
            return

        elapsed = time.monotonic() - slot.started
        if "error" in response:
            error = response["error"]
            logger.debug("<- %s id=%d error %s (%.3fs)", slot.method, request_id, error.get("code"), elapsed)
            self._resolve(
                slot,
                exception=RpcError(
                    error.get("code"),
                    error.get("message", ""),
                    data=error.get("data"),
                    method=slot.method,
                    params=slot.params,
                    request_id=request_id,
                ),
            )
        else:
            logger.debug("<- %s id=%d ok (%.3fs)", slot.method, request_id, elapsed)
            self._resolve(slot, result=response["result"])

    def fail_pending(self, error: TransportError) -> None:
        """Fail every in-flight call, e.g. after the channel dropped."""
        with self._lock:
            pending = list(self._pending.items())
            self._pending.clear()
        for request_id, slot in pending:
            self._resolve(slot, exception=TransportError(str(error), slot.method, request_id))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.fail_pending(TransportError("RPC client closed"))
        self._transport.close()

    def _take(self, request_id: Optional[int]) -> Optional[_Slot]:
        with self._lock:
            return self._pending.pop(request_id, None)  # type: ignore[arg-type]

    @staticmethod
    def _resolve(slot: _Slot, result: Any = None, exception: Optional[BaseException] = None) -> None:
        try:
            if exception is not None:
                slot.future.set_exception(exception)
            else:
                slot.future.set_result(result)
        except InvalidStateError:
            logger.debug("Response for cancelled %s discarded", slot.method)

    # ---- eth namespace reads used by the builder and orchestrator ----

    def get_transaction_count(self, address: str, block: str = "latest") -> int:
        """
        Get transaction nonce for an address.

        Args:
            address: 0x-prefixed address
            block: Block tag ("latest" or "pending")

        Returns:
            Current nonce
        """
        result = self.call("eth_getTransactionCount", [to_checksum_address(address), block])
        return from_quantity(result)

    def chain_id(self) -> int:
        return from_quantity(self.call("eth_chainId", []))

    def max_priority_fee_per_gas(self) -> int:
        return from_quantity(self.call("eth_maxPriorityFeePerGas", []))

    def estimate_gas(self, tx: dict[str, Any]) -> int:
        """
        Estimate gas for a transaction in JSON-RPC form.

        Returns:
            Gas units
        """
        return from_quantity(self.call("eth_estimateGas", [tx]))

    def get_block(self, block: Union[str, int] = "latest", full_transactions: bool = False) -> Optional[dict]:
        tag = to_quantity(block) if isinstance(block, int) else block
        return self.call("eth_getBlockByNumber", [tag, full_transactions])

    def send_raw_transaction(self, raw_tx: str) -> str:
        """
        Send a signed raw transaction.

        Args:
            raw_tx: 0x-prefixed hex encoded signed transaction

        Returns:
            Transaction hash (0x-prefixed hex)
        """
        return self.call("eth_sendRawTransaction", [raw_tx])

    def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return self.call("eth_getTransactionReceipt", [tx_hash])

    def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = 120,
        poll_interval: float = 2.0,
    ) -> dict:
        """
        Wait for a transaction receipt.

        Args:
            tx_hash: Transaction hash
            timeout: Maximum wait time in seconds
            poll_interval: Polling interval in seconds

        Returns:
            Transaction receipt dict

        Raises:
            RpcTimeoutError: If receipt not found within timeout
        """
        start = time.monotonic()
        while time.monotonic() - start < timeout:
            receipt = self.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            time.sleep(poll_interval)

        raise RpcTimeoutError(
            "eth_getTransactionReceipt",
            None,
            time.monotonic() - start,
            message=f"Transaction {tx_hash} not confirmed within {timeout}s",
        )

"""Client-side transport abstraction.

A Transport opens one logical operation at a time and returns an
EnvelopeStream: a lazy, pull-based sequence of Envelopes with an explicit
`aclose()` that releases the underlying connection.

Implementations:
- RpcTransport: persistent gRPC channel, one call per operation
- EventStreamTransport: one HTTP request per operation, SSE response body
- MockTransport: scripted in-memory transcripts for tests

Nothing above this layer branches on transport kind.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..protocol.envelope import Envelope
from ..protocol.operations import Operation

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "http://127.0.0.1:50051"
DEFAULT_REST_URL = "https://api.stagehand.browserbase.com/v1"


class TransportKind(str, Enum):
    RPC = "rpc"
    EVENT_STREAM = "event_stream"


class TransportState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass(frozen=True)
class Destination:
    """Where a session connects: transport kind + address."""

    kind: TransportKind
    address: str

    @classmethod
    def rpc(cls, url: str = DEFAULT_RPC_URL) -> Destination:
        return cls(TransportKind.RPC, url)

    @classmethod
    def rest(cls, base_url: str = DEFAULT_REST_URL) -> Destination:
        return cls(TransportKind.EVENT_STREAM, base_url.rstrip("/"))


@dataclass(frozen=True)
class Credentials:
    """Service credentials sent with every request that needs them."""

    api_key: str | None = None
    project_id: str | None = None


class CancellationToken:
    """Cooperative cancellation handle threaded through an operation."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        for callback in self._callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")
        self._callbacks.clear()

    def add_callback(self, callback: Callable[[], Any]) -> None:
        """Run `callback` on cancellation (immediately if already cancelled)."""
        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    async def wait(self) -> None:
        await self._event.wait()


class EnvelopeStream(ABC):
    """Lazy Envelope sequence for one operation.

    Nothing touches the network until the first `__anext__`. The sequence
    ends with an end-of-stream Envelope when the remote side closes cleanly;
    transport failures propagate as raw exceptions for the normalizer.
    """

    def __init__(self, operation: Operation, token: CancellationToken):
        self.operation = operation
        self.token = token
        self._iterator: AsyncIterator[Envelope] | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        """True while the underlying connection/call may still hold resources."""
        return self._iterator is not None and not self._closed

    def __aiter__(self) -> EnvelopeStream:
        return self

    async def __anext__(self) -> Envelope:
        if self._closed or self.token.cancelled:
            raise StopAsyncIteration
        if self._iterator is None:
            self._iterator = self._iterate()
        try:
            return await self._iterator.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        """Release the underlying connection. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._release()
        finally:
            if self._iterator is not None:
                await self._iterator.aclose()  # type: ignore[attr-defined]

    @abstractmethod
    def _iterate(self) -> AsyncIterator[Envelope]:
        """Implementation-specific receive logic. Must be an async generator."""
        ...

    @abstractmethod
    async def _release(self) -> None:
        """Close the connection or cancel the call backing this stream."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Protocol for transports.

    - connect/close: lifecycle of the shared channel or HTTP client
    - open: start one operation and return its EnvelopeStream
    """

    @property
    def destination(self) -> Destination: ...

    @property
    def state(self) -> TransportState: ...

    async def connect(self) -> None:
        """Prepare the transport.

        Raises:
            TransportError: If the destination is unreachable at negotiation time
        """
        ...

    async def close(self) -> None: ...

    def open(self, operation: Operation, token: CancellationToken) -> EnvelopeStream: ...


class BaseTransport(ABC):
    """Common lifecycle handling for transports."""

    def __init__(self, destination: Destination, credentials: Credentials | None = None):
        self._destination = destination
        self.credentials = credentials or Credentials()
        self._state = TransportState.DISCONNECTED
        self._lock = asyncio.Lock()

    @property
    def destination(self) -> Destination:
        return self._destination

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == TransportState.CONNECTED

    async def connect(self) -> None:
        async with self._lock:
            if self._state == TransportState.CONNECTED:
                return

            self._state = TransportState.CONNECTING
            try:
                await self._do_connect()
            except BaseException:
                self._state = TransportState.DISCONNECTED
                raise
            self._state = TransportState.CONNECTED
            logger.info(f"{self.__class__.__name__} connected to {self._destination.address}")

    async def close(self) -> None:
        async with self._lock:
            if self._state in (TransportState.DISCONNECTED, TransportState.CLOSED):
                return
            self._state = TransportState.CLOSED
            await self._do_close()
            logger.info(f"{self.__class__.__name__} closed")

    @abstractmethod
    def open(self, operation: Operation, token: CancellationToken) -> EnvelopeStream: ...

    @abstractmethod
    async def _do_connect(self) -> None: ...

    @abstractmethod
    async def _do_close(self) -> None: ...

    async def __aenter__(self) -> BaseTransport:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

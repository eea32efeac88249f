"""Binary RPC transport over a persistent gRPC channel.

One channel per session; every operation is one call on it, so concurrent
operations multiplex over the same HTTP/2 connection. Streaming operations
yield one Envelope per response message; `Close` is unary and yields one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urlparse

import grpc

from ..errors import normalize_error
from ..protocol.envelope import Envelope
from ..protocol.operations import Operation
from ..wire.rpc import RpcCodec
from .base import BaseTransport, CancellationToken, Credentials, Destination, EnvelopeStream

logger = logging.getLogger(__name__)


def _channel_target(url: str) -> tuple[str, bool]:
    """Split an endpoint URL into a gRPC target and a TLS flag."""
    parsed = urlparse(url if "://" in url else f"http://{url}")
    secure = parsed.scheme in ("https", "grpcs")
    port = parsed.port or (443 if secure else 50051)
    return f"{parsed.hostname}:{port}", secure


class RpcEnvelopeStream(EnvelopeStream):
    """Envelopes from a single gRPC call."""

    def __init__(
        self,
        operation: Operation,
        token: CancellationToken,
        channel: grpc.aio.Channel,
        codec: RpcCodec,
    ):
        super().__init__(operation, token)
        self._channel = channel
        self._codec = codec
        self._call: Any = None

    @property
    def is_open(self) -> bool:
        if self._call is None or self._closed:
            return False
        return not self._call.done()

    async def _iterate(self) -> AsyncIterator[Envelope]:
        operation = self.operation
        request = self._codec.encode(operation)
        method = self._codec.method(operation.kind)
        metadata = self._codec.metadata(operation)

        # Byte-level (de)serialization is the codec's job
        try:
            if operation.streaming:
                stub = self._channel.unary_stream(method)
                self._call = stub(request, timeout=operation.timeout, metadata=metadata)
                async for message in self._call:
                    yield self._codec.decode(operation.kind, message, operation.id)
            else:
                stub = self._channel.unary_unary(method)
                self._call = stub(request, timeout=operation.timeout, metadata=metadata)
                message = await self._call
                yield self._codec.decode(operation.kind, message, operation.id)
        finally:
            if self._call is not None and not self._call.done():
                self._call.cancel()

        yield Envelope.end(operation.id)

    async def _release(self) -> None:
        if self._call is not None and not self._call.done():
            self._call.cancel()
            logger.debug(f"Cancelled RPC call for {self.operation.id}")


class RpcTransport(BaseTransport):
    """Transport over a gRPC channel.

    `connect` waits for the channel to become ready, so an unreachable
    endpoint fails fast instead of on the first operation.
    """

    def __init__(
        self,
        destination: Destination,
        credentials: Credentials | None = None,
        connect_timeout: float = 10.0,
        channel: grpc.aio.Channel | None = None,
    ):
        super().__init__(destination, credentials)
        self.connect_timeout = connect_timeout
        self.codec = RpcCodec()
        self._channel = channel

    async def _do_connect(self) -> None:
        if self._channel is None:
            target, secure = _channel_target(self.destination.address)
            if secure:
                self._channel = grpc.aio.secure_channel(target, grpc.ssl_channel_credentials())
            else:
                self._channel = grpc.aio.insecure_channel(target)

        try:
            await asyncio.wait_for(self._channel.channel_ready(), timeout=self.connect_timeout)
        except (TimeoutError, grpc.aio.AioRpcError) as e:
            await self._channel.close()
            self._channel = None
            error = normalize_error(ConnectionError(f"{self.destination.address} unreachable: {e!r}"))
            raise error from e

    async def _do_close(self) -> None:
        if self._channel is not None:
            await self._channel.close()
            self._channel = None

    def open(self, operation: Operation, token: CancellationToken) -> RpcEnvelopeStream:
        if self._channel is None or not self.is_connected:
            raise normalize_error(ConnectionError("RPC channel is not connected"))
        return RpcEnvelopeStream(operation, token, self._channel, self.codec)

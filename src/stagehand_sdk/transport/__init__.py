"""Transport abstraction layer.

Provides interchangeable transports behind one interface:
- RPC - persistent gRPC channel, binary protobuf frames
- Event stream - HTTP POST per operation, SSE response bodies
- Mock - scripted transcripts for tests

The transport is selected once, at connect time, from the Destination.
"""

from __future__ import annotations

from .base import (
    DEFAULT_REST_URL,
    DEFAULT_RPC_URL,
    BaseTransport,
    CancellationToken,
    Credentials,
    Destination,
    EnvelopeStream,
    Transport,
    TransportKind,
    TransportState,
)
from .mock import MockTransport, ScriptedResponse
from .rpc import RpcTransport
from .sse import EventStreamTransport


def create_transport(
    destination: Destination,
    credentials: Credentials | None = None,
    connect_timeout: float = 10.0,
) -> BaseTransport:
    """Create the transport matching a destination's kind.

    Raises:
        MissingCredentialError: If the event-stream transport lacks credentials
    """
    if destination.kind == TransportKind.EVENT_STREAM:
        return EventStreamTransport(destination, credentials, timeout=connect_timeout)
    return RpcTransport(destination, credentials, connect_timeout=connect_timeout)


__all__ = [
    "DEFAULT_REST_URL",
    "DEFAULT_RPC_URL",
    "BaseTransport",
    "CancellationToken",
    "Credentials",
    "Destination",
    "EnvelopeStream",
    "EventStreamTransport",
    "MockTransport",
    "RpcTransport",
    "ScriptedResponse",
    "Transport",
    "TransportKind",
    "TransportState",
    "create_transport",
]

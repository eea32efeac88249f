"""Wire codecs.

Two codecs normalize structurally different wire protocols into Envelopes:
- EventStreamCodec: REST requests, `text/event-stream` responses
- RpcCodec: protobuf messages over gRPC
"""

from .rpc import RpcCodec
from .sse import EventStreamCodec, EventStreamDecoder, HttpRequest

__all__ = [
    "EventStreamCodec",
    "EventStreamDecoder",
    "HttpRequest",
    "RpcCodec",
]

"""Stagehand SDK - async client for the Stagehand browser-automation service.

Provides two interchangeable transports behind one API:
- rpc: persistent gRPC channel (Destination.rpc)
- event stream: HTTP requests with SSE responses (Destination.rest)
- mock: scripted transport for testing without I/O
"""

from .client import Stagehand, connect
from .config import (
    AgentConfig,
    AgentExecuteOptions,
    ClientConfig,
    Env,
    LocalBrowserLaunchOptions,
    ModelConfig,
    V3Options,
    Viewport,
    resolve_credential,
    resolve_credentials,
    resolve_model_api_key,
)
from .errors import (
    AlreadyEndedError,
    AlreadyStartedError,
    ApiError,
    ConnectionLostError,
    MalformedPayloadError,
    MissingCredentialError,
    NotStartedError,
    PreconditionError,
    StagehandError,
    StagehandTimeoutError,
    TransportError,
    UnauthorizedError,
    UnexpectedEndOfStreamError,
    normalize_error,
)
from .multiplexer import OperationStream
from .protocol import (
    DataJsonEvent,
    ElementsJsonEvent,
    EndedEvent,
    Envelope,
    ErrorEvent,
    LogEvent,
    Operation,
    OperationKind,
    ProgressEvent,
    ResultJsonEvent,
    StartedEvent,
    SuccessEvent,
    TypedEvent,
)
from .session import SessionState
from .transport import (
    Credentials,
    Destination,
    EventStreamTransport,
    MockTransport,
    RpcTransport,
    TransportKind,
)

__version__ = "0.1.0"

__all__ = [
    # Client
    "Stagehand",
    "connect",
    "OperationStream",
    "SessionState",
    # Configuration
    "AgentConfig",
    "AgentExecuteOptions",
    "ClientConfig",
    "Env",
    "LocalBrowserLaunchOptions",
    "ModelConfig",
    "V3Options",
    "Viewport",
    "resolve_credential",
    "resolve_credentials",
    "resolve_model_api_key",
    # Transports
    "Credentials",
    "Destination",
    "EventStreamTransport",
    "MockTransport",
    "RpcTransport",
    "TransportKind",
    # Protocol
    "Envelope",
    "Operation",
    "OperationKind",
    "TypedEvent",
    "LogEvent",
    "ProgressEvent",
    "SuccessEvent",
    "DataJsonEvent",
    "ElementsJsonEvent",
    "ResultJsonEvent",
    "StartedEvent",
    "EndedEvent",
    "ErrorEvent",
    # Errors
    "StagehandError",
    "TransportError",
    "ConnectionLostError",
    "MalformedPayloadError",
    "ApiError",
    "UnauthorizedError",
    "StagehandTimeoutError",
    "UnexpectedEndOfStreamError",
    "MissingCredentialError",
    "PreconditionError",
    "NotStartedError",
    "AlreadyStartedError",
    "AlreadyEndedError",
    "normalize_error",
]

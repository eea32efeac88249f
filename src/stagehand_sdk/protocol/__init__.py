"""Transport-agnostic protocol layer.

Defines the data model shared by both transports:
- Operation: one logical call with its params and timeout
- Envelope: a decoded wire unit, before operation-specific interpretation
- TypedEvent: operation-specific events delivered to callers
"""

from .envelope import Envelope
from .events import (
    DataJsonEvent,
    ElementsJsonEvent,
    EndedEvent,
    ErrorEvent,
    LogEvent,
    ProgressEvent,
    ResultJsonEvent,
    StartedEvent,
    SuccessEvent,
    TypedEvent,
)
from .operations import Operation, OperationKind

__all__ = [
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
]

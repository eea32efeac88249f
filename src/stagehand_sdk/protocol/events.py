"""Typed events delivered to callers.

Each operation emits only the events of its declared set, ending with
exactly one terminal event:

    act      -> LogEvent* ProgressEvent* (SuccessEvent | ErrorEvent)
    extract  -> LogEvent* ProgressEvent* (DataJsonEvent | ErrorEvent)
    observe  -> LogEvent* ProgressEvent* (ElementsJsonEvent | ErrorEvent)
    execute  -> LogEvent* ProgressEvent* (ResultJsonEvent | ErrorEvent)
    start    -> LogEvent* ProgressEvent* (StartedEvent | ErrorEvent)
    end      -> EndedEvent | ErrorEvent
"""

from __future__ import annotations

from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict

from ..errors import StagehandError


class TypedEvent(BaseModel):
    """Base class for operation events."""

    terminal: ClassVar[bool] = False

    type: str
    correlation_id: str | None = None

    def is_terminal(self) -> bool:
        return self.terminal

    def is_error(self) -> bool:
        return False


class LogEvent(TypedEvent):
    """Log line emitted by the remote service."""

    type: Literal["log"] = "log"
    category: str = ""
    message: str = ""
    auxiliary: str | None = None


class ProgressEvent(TypedEvent):
    """Non-terminal status update (e.g. "running")."""

    type: Literal["progress"] = "progress"
    message: str = ""


class SuccessEvent(TypedEvent):
    terminal: ClassVar[bool] = True

    type: Literal["success"] = "success"
    success: bool


class DataJsonEvent(TypedEvent):
    terminal: ClassVar[bool] = True

    type: Literal["data_json"] = "data_json"
    data_json: str


class ElementsJsonEvent(TypedEvent):
    terminal: ClassVar[bool] = True

    type: Literal["elements_json"] = "elements_json"
    elements_json: str


class ResultJsonEvent(TypedEvent):
    terminal: ClassVar[bool] = True

    type: Literal["result_json"] = "result_json"
    result_json: str


class StartedEvent(TypedEvent):
    """Final result of `start`, carrying the remote session identity."""

    terminal: ClassVar[bool] = True

    type: Literal["started"] = "started"
    session_id: str
    result: dict[str, Any] | None = None


class EndedEvent(TypedEvent):
    terminal: ClassVar[bool] = True

    type: Literal["ended"] = "ended"
    result: dict[str, Any] | None = None


class ErrorEvent(TypedEvent):
    """Terminal failure of an operation. `error` is already normalized."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    terminal: ClassVar[bool] = True

    type: Literal["error"] = "error"
    error: StagehandError

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def message(self) -> str:
        return str(self.error)

    def is_error(self) -> bool:
        return True

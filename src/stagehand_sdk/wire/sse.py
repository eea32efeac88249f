"""Event-stream (HTTP + SSE) wire codec.

Request side: maps an Operation onto a REST endpoint and a camelCase JSON body.
Response side: incrementally parses `text/event-stream` bytes into Envelopes.

Wire format (one event):
    data: {"type": "log", "data": {"category": "act", "message": "clicking"}}
    <blank line>

Chunks may split anywhere, including inside a UTF-8 sequence or between
CR and LF. Nothing is emitted until the blank line ending an event arrives.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from pydantic.alias_generators import to_camel, to_snake

from ..errors import DecodeFailure, NotStartedError
from ..protocol.envelope import Envelope
from ..protocol.operations import Operation, OperationKind

logger = logging.getLogger(__name__)

_LINE_END = re.compile(rb"\r\n|\r|\n")

# (top-level params, params nested under "options"), as param -> wire key
_BODY_LAYOUT: dict[OperationKind, tuple[dict[str, str], dict[str, str]]] = {
    OperationKind.ACT: (
        {"instruction": "input", "frame_id": "frameId"},
        {"model": "model", "variables": "variables", "timeout_ms": "timeoutMs"},
    ),
    OperationKind.EXTRACT: (
        {"instruction": "instruction", "schema": "schema", "frame_id": "frameId"},
        {"model": "model", "timeout_ms": "timeoutMs", "selector": "selector"},
    ),
    OperationKind.OBSERVE: (
        {"instruction": "instruction", "frame_id": "frameId"},
        {
            "model": "model",
            "timeout_ms": "timeoutMs",
            "selector": "selector",
            "only_selectors": "onlySelectors",
        },
    ),
    OperationKind.EXECUTE: (
        {
            "agent_config": "agentConfig",
            "execute_options": "executeOptions",
            "frame_id": "frameId",
        },
        {},
    ),
}

# Start options whose wire name is not plain camelCase
_START_RENAMES = {
    "model": "modelName",
    "browserbase_session_id": "browserbaseSessionID",
}

# Start options whose nested keys are camelCased too; other nested values are opaque
_CAMEL_NESTED = frozenset({"local_browser_launch_options"})

# Sent as x-bb-* headers by the transport, never in the body
_HEADER_PARAMS = frozenset({"api_key", "project_id"})

_SESSION_PATHS = {
    OperationKind.ACT: "act",
    OperationKind.EXTRACT: "extract",
    OperationKind.OBSERVE: "observe",
    OperationKind.EXECUTE: "agentExecute",
    OperationKind.END: "end",
}


@dataclass(frozen=True)
class HttpRequest:
    """An encoded operation, ready for httpx."""

    method: str
    path: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    streaming: bool = True


def _model_to_wire(model: Any) -> Any:
    if isinstance(model, dict):
        wire = {"modelName": model.get("model_name")}
        if model.get("api_key"):
            wire["apiKey"] = model["api_key"]
        if model.get("base_url"):
            wire["baseURL"] = model["base_url"]
        return wire
    return model


def _model_from_wire(model: Any) -> Any:
    if isinstance(model, dict):
        params = {"model_name": model.get("modelName")}
        if "apiKey" in model:
            params["api_key"] = model["apiKey"]
        if "baseURL" in model:
            params["base_url"] = model["baseURL"]
        return params
    return model


def _convert_keys(value: Any, convert: Callable[[str], str]) -> Any:
    if isinstance(value, dict):
        return {convert(k): _convert_keys(v, convert) for k, v in value.items()}
    return value


def _start_body(params: dict[str, Any]) -> dict[str, Any]:
    body: dict[str, Any] = {}
    for key, value in params.items():
        if key in _HEADER_PARAMS:
            continue
        if key == "model":
            # The REST API takes the model name; the key travels as a header
            value = value.get("model_name") if isinstance(value, dict) else value
        elif key in _CAMEL_NESTED:
            value = _convert_keys(value, to_camel)
        body[_START_RENAMES.get(key, to_camel(key))] = value
    return body


def _start_params(body: dict[str, Any]) -> dict[str, Any]:
    reverse = {wire: param for param, wire in _START_RENAMES.items()}
    params: dict[str, Any] = {}
    for key, value in body.items():
        param = reverse.get(key, to_snake(key))
        if param in _CAMEL_NESTED:
            value = _convert_keys(value, to_snake)
        params[param] = value
    return params


class EventStreamCodec:
    """Encodes operations as REST requests and decodes SSE responses."""

    def encode(self, operation: Operation) -> HttpRequest:
        """Encode an operation into an HTTP request."""
        if operation.kind == OperationKind.START:
            path = "/sessions/start"
            body = _start_body(operation.params)
        else:
            if not operation.session_id:
                raise NotStartedError(f"Operation '{operation.kind.value}' requires a session id")
            path = f"/sessions/{operation.session_id}/{_SESSION_PATHS[operation.kind]}"
            body = self._session_body(operation)

        headers = {"Content-Type": "application/json"}
        if operation.session_id:
            headers["x-bb-session-id"] = operation.session_id
        if operation.model_api_key:
            headers["x-model-api-key"] = operation.model_api_key
        if operation.streaming:
            headers["x-stream-response"] = "true"
            headers["Accept"] = "text/event-stream"

        return HttpRequest(
            method="POST",
            path=path,
            body=json.dumps(body).encode("utf-8"),
            headers=headers,
            streaming=operation.streaming,
        )

    def _session_body(self, operation: Operation) -> dict[str, Any]:
        if operation.kind == OperationKind.END:
            return {"force": operation.params.get("force", False)}

        top, nested = _BODY_LAYOUT[operation.kind]
        body: dict[str, Any] = {}
        options: dict[str, Any] = {}
        for target, layout in ((body, top), (options, nested)):
            for param, wire in layout.items():
                value = operation.params.get(param)
                if value is None:
                    continue
                target[wire] = _model_to_wire(value) if param == "model" else value
        if nested:
            body["options"] = options
        return body

    def decode_request(self, kind: OperationKind, body: bytes) -> Operation:
        """Decode a request body produced by `encode` back into an Operation."""
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise DecodeFailure(f"Invalid request body: {e}", raw=body) from e

        if kind == OperationKind.START:
            return Operation.create(kind, _start_params(data))
        if kind == OperationKind.END:
            return Operation.create(kind, {"force": data.get("force", False)})

        top, nested = _BODY_LAYOUT[kind]
        options = data.get("options", {})
        params: dict[str, Any] = {}
        for source, layout in ((data, top), (options, nested)):
            for param, wire in layout.items():
                if wire in source:
                    value = source[wire]
                    params[param] = _model_from_wire(value) if param == "model" else value
        return Operation.create(kind, params, params.get("timeout_ms"))

    def decode_body(self, body: bytes, correlation_id: str | None = None) -> Envelope:
        """Decode a non-streaming JSON response (e.g. `end`)."""
        if not body.strip():
            return Envelope(kind="result", payload={}, correlation_id=correlation_id)
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise DecodeFailure(f"Invalid response body: {e}", raw=body) from e
        return Envelope(kind="result", payload=data, correlation_id=correlation_id)

    def decoder(self, correlation_id: str | None = None) -> EventStreamDecoder:
        return EventStreamDecoder(correlation_id)


class EventStreamDecoder:
    """Incremental SSE parser.

    Feed arbitrary byte chunks; complete events come back as Envelopes.
    Output is identical regardless of how the input was split.
    """

    def __init__(self, correlation_id: str | None = None):
        self.correlation_id = correlation_id
        self._buffer = b""
        self._data_lines: list[bytes] = []
        self._event_name: str | None = None
        self._raw_event = b""

    @property
    def remainder(self) -> bytes:
        """Bytes received but not yet part of a complete line."""
        return self._buffer

    def decode(self, chunk: bytes) -> tuple[list[Envelope], bytes]:
        """Decode a chunk; returns (envelopes, remainder-buffer)."""
        return self.feed(chunk), self._buffer

    def feed(self, chunk: bytes) -> list[Envelope]:
        """Consume a chunk and return the envelopes it completes."""
        return list(self.iter_feed(chunk))

    def iter_feed(self, chunk: bytes) -> Iterator[Envelope]:
        """Consume a chunk, yielding envelopes as events complete.

        Raises:
            DecodeFailure: If a complete event carries malformed data. Events
                before it have already been yielded; the bad event is
                consumed and everything after it stays buffered.
        """
        self._buffer += chunk
        while (line := self._next_line()) is not None:
            envelope = self._process_line(line)
            if envelope is not None:
                yield envelope

    def flush(self) -> list[Envelope]:
        """Called at EOF. An unterminated trailing event is discarded."""
        # No LF can follow a trailing CR any more, so it ends a line
        envelopes = self.feed(b"\n") if self._buffer.endswith(b"\r") else []
        if self._buffer.strip() or self._data_lines:
            logger.debug(f"Discarding incomplete SSE event at EOF: {self._raw_event[:80]!r}")
        self._buffer = b""
        self._reset_event()
        return envelopes

    def _next_line(self) -> bytes | None:
        match = _LINE_END.search(self._buffer)
        if match is None:
            return None
        if match.group() == b"\r" and match.end() == len(self._buffer):
            # CR at the end of the buffer: the LF may arrive in the next chunk
            return None
        line = self._buffer[: match.start()]
        self._buffer = self._buffer[match.end() :]
        return line

    def _process_line(self, line: bytes) -> Envelope | None:
        if not line:
            return self._dispatch()

        self._raw_event += line + b"\n"
        if line.startswith(b":"):
            return None  # comment / heartbeat

        name, _, value = line.partition(b":")
        if value.startswith(b" "):
            value = value[1:]

        if name == b"data":
            self._data_lines.append(value)
        elif name == b"event":
            self._event_name = value.decode("utf-8", errors="replace")
        # id / retry are irrelevant without reconnection
        return None

    def _dispatch(self) -> Envelope | None:
        data_lines = self._data_lines
        raw = self._raw_event
        event_name = self._event_name
        self._reset_event()

        if not data_lines:
            return None

        data = b"\n".join(data_lines)
        try:
            message = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeFailure(f"Malformed SSE event data: {e}", raw=raw) from e
        if not isinstance(message, dict):
            raise DecodeFailure("SSE event data is not a JSON object", raw=raw)

        return self._to_envelope(message, event_name)

    def _to_envelope(self, message: dict[str, Any], event_name: str | None) -> Envelope:
        event_type = message.get("type") or event_name or "message"
        data = message.get("data")

        if event_type == "system" and isinstance(data, dict):
            status = data.get("status")
            if status == "finished":
                return self._envelope("result", data.get("result"))
            if status == "error":
                return self._envelope("error", {"error": data.get("error") or "Unknown server error"})
            return self._envelope("progress", {"status": status})

        return self._envelope(event_type, data)

    def _envelope(self, kind: str, payload: Any) -> Envelope:
        return Envelope(kind=kind, payload=payload, correlation_id=self.correlation_id)

    def _reset_event(self) -> None:
        self._data_lines = []
        self._event_name = None
        self._raw_event = b""

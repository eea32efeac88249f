"""Binary RPC wire codec.

Maps Operations onto `stagehand.v1` protobuf requests and decodes response
messages into Envelopes. gRPC frames each message natively, so one received
message is always one complete unit; the codec never sees partial frames.

Envelope kind is the name of the populated `event` oneof member
("log", "success", "data_json", ...). Messages without that oneof, such as
`CloseResponse`, decode to kind "result".
"""

from __future__ import annotations

import json
from typing import Any

from google.protobuf import json_format
from google.protobuf.message import DecodeError, Message

from ..errors import DecodeFailure
from ..protocol.envelope import Envelope
from ..protocol.operations import Operation, OperationKind
from .proto import message_class, method_path

# kind -> (rpc method, request message, response message)
_METHODS: dict[OperationKind, tuple[str, str, str]] = {
    OperationKind.START: ("Init", "InitRequest", "InitResponse"),
    OperationKind.ACT: ("Act", "ActRequest", "ActResponse"),
    OperationKind.EXTRACT: ("Extract", "ExtractRequest", "ExtractResponse"),
    OperationKind.OBSERVE: ("Observe", "ObserveRequest", "ObserveResponse"),
    OperationKind.EXECUTE: ("Execute", "ExecuteRequest", "ExecuteResponse"),
    OperationKind.END: ("Close", "CloseRequest", "CloseResponse"),
}

# Opaque JSON params carried as strings on the wire
_JSON_FIELDS = {
    "schema": "schema_json",
    "agent_config": "agent_config_json",
    "execute_options": "execute_options_json",
    "browserbase_session_create_params": "browserbase_session_create_params_json",
}


def _to_dict(message: Message) -> dict[str, Any]:
    return json_format.MessageToDict(message, preserving_proto_field_name=True)


def _model_to_proto(model: Any) -> dict[str, Any]:
    if isinstance(model, dict):
        return {"model_obj": {k: v for k, v in model.items() if v is not None}}
    return {"model_string": model}


def _model_from_proto(model: dict[str, Any]) -> Any:
    if "model_obj" in model:
        return model["model_obj"]
    return model.get("model_string")


class RpcCodec:
    """Encodes operations as protobuf requests and decodes responses."""

    def method(self, kind: OperationKind) -> str:
        return method_path(_METHODS[kind][0])

    def metadata(self, operation: Operation) -> tuple[tuple[str, str], ...]:
        """Call metadata carrying the session identity."""
        pairs = []
        if operation.session_id:
            pairs.append(("x-bb-session-id", operation.session_id))
        if operation.model_api_key:
            pairs.append(("x-model-api-key", operation.model_api_key))
        return tuple(pairs)

    def encode(self, operation: Operation) -> bytes:
        """Serialize the operation's request message."""
        request = self._request_fields(operation)
        message = message_class(_METHODS[operation.kind][1])()
        try:
            json_format.ParseDict(request, message)
        except json_format.ParseError as e:
            raise DecodeFailure(f"Cannot encode {operation.kind.value} request: {e}") from e
        return message.SerializeToString()

    def _request_fields(self, operation: Operation) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for key, value in operation.params.items():
            if key == "model":
                fields["model"] = _model_to_proto(value)
            elif key in _JSON_FIELDS:
                fields[_JSON_FIELDS[key]] = value if isinstance(value, str) else json.dumps(value)
            else:
                fields[key] = value

        if operation.kind == OperationKind.EXECUTE:
            fields["session_id"] = operation.session_id or ""
            options = operation.params.get("execute_options") or {}
            fields["instruction"] = options.get("instruction", "")
        return fields

    def decode_request(self, kind: OperationKind, data: bytes) -> Operation:
        """Decode a request produced by `encode` back into an Operation."""
        message = self._parse(_METHODS[kind][1], data)
        params: dict[str, Any] = {}
        for key, value in _to_dict(message).items():
            if key == "model":
                params["model"] = _model_from_proto(value)
            elif key.endswith("_json"):
                params[key.removesuffix("_json")] = json.loads(value)
            else:
                params[key] = value

        if kind == OperationKind.EXECUTE:
            params.pop("session_id", None)
            params.pop("instruction", None)
        elif kind == OperationKind.ACT:
            params.setdefault("variables", {})
        elif kind == OperationKind.END:
            params.setdefault("force", False)
        return Operation.create(kind, params, params.get("timeout_ms"))

    def decode(self, kind: OperationKind, data: bytes, correlation_id: str | None = None) -> Envelope:
        """Decode one response message into an Envelope."""
        message = self._parse(_METHODS[kind][2], data)

        which = None
        if "event" in message.DESCRIPTOR.oneofs_by_name:
            which = message.WhichOneof("event")
        if which is None:
            return Envelope(kind="result", payload=_to_dict(message), correlation_id=correlation_id)

        value = getattr(message, which)
        payload = _to_dict(value) if isinstance(value, Message) else value
        return Envelope(kind=which, payload=payload, correlation_id=correlation_id)

    def _parse(self, name: str, data: bytes) -> Message:
        message = message_class(name)()
        try:
            message.ParseFromString(data)
        except DecodeError as e:
            raise DecodeFailure(f"Malformed {name} frame: {e}", raw=data) from e
        return message

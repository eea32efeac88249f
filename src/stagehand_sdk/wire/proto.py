"""Protobuf schema for the `stagehand.v1` RPC service.

The descriptors are assembled at import time with the protobuf runtime, so
the package needs no generated `_pb2` modules. Equivalent .proto:

    message ActRequest {
      string instruction = 1;
      ModelConfiguration model = 2;
      map<string, string> variables = 3;
      int32 timeout_ms = 4;
      string frame_id = 5;
    }
    message ActResponse {
      oneof event { LogLine log = 1; bool success = 2; }
    }
    ...
    service StagehandService {
      rpc Init(InitRequest) returns (stream InitResponse);
      rpc Act(ActRequest) returns (stream ActResponse);
      rpc Extract(ExtractRequest) returns (stream ExtractResponse);
      rpc Observe(ObserveRequest) returns (stream ObserveResponse);
      rpc Execute(ExecuteRequest) returns (stream ExecuteResponse);
      rpc Close(CloseRequest) returns (CloseResponse);
    }
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import Message

PACKAGE = "stagehand.v1"
SERVICE = "StagehandService"

_F = descriptor_pb2.FieldDescriptorProto
STRING = _F.TYPE_STRING
BOOL = _F.TYPE_BOOL
INT32 = _F.TYPE_INT32
MESSAGE = _F.TYPE_MESSAGE


def _field(
    name: str,
    number: int,
    kind: int,
    message: str | None = None,
    repeated: bool = False,
    oneof: int | None = None,
) -> descriptor_pb2.FieldDescriptorProto:
    field = _F(
        name=name,
        number=number,
        type=kind,
        label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
    )
    if message:
        field.type_name = f".{PACKAGE}.{message}"
    if oneof is not None:
        field.oneof_index = oneof
    return field


def _message(name: str, *fields: descriptor_pb2.FieldDescriptorProto) -> descriptor_pb2.DescriptorProto:
    return descriptor_pb2.DescriptorProto(name=name, field=list(fields))


def _event_response(name: str, result: str, kind: int, message: str | None = None):
    """Response carrying either a log line or the operation's result."""
    proto = _message(
        name,
        _field("log", 1, MESSAGE, "LogLine", oneof=0),
        _field(result, 2, kind, message, oneof=0),
    )
    proto.oneof_decl.add(name="event")
    return proto


def _model_configuration() -> descriptor_pb2.DescriptorProto:
    proto = _message(
        "ModelConfiguration",
        _field("model_string", 1, STRING, oneof=0),
        _field("model_obj", 2, MESSAGE, "ModelObj", oneof=0),
    )
    proto.oneof_decl.add(name="config")
    return proto


def _act_request() -> descriptor_pb2.DescriptorProto:
    entry = _message("VariablesEntry", _field("key", 1, STRING), _field("value", 2, STRING))
    entry.options.map_entry = True
    proto = _message(
        "ActRequest",
        _field("instruction", 1, STRING),
        _field("model", 2, MESSAGE, "ModelConfiguration"),
        _field("variables", 3, MESSAGE, "ActRequest.VariablesEntry", repeated=True),
        _field("timeout_ms", 4, INT32),
        _field("frame_id", 5, STRING),
    )
    proto.nested_type.append(entry)
    return proto


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    messages = [
        _message(
            "ModelObj",
            _field("model_name", 1, STRING),
            _field("api_key", 2, STRING),
            _field("base_url", 3, STRING),
        ),
        _model_configuration(),
        _message(
            "LogLine",
            _field("category", 1, STRING),
            _field("message", 2, STRING),
            _field("auxiliary", 3, STRING),
        ),
        _message("Viewport", _field("width", 1, INT32), _field("height", 2, INT32)),
        _message(
            "LocalBrowserLaunchOptions",
            _field("headless", 1, BOOL),
            _field("executable_path", 2, STRING),
            _field("args", 3, STRING, repeated=True),
            _field("user_data_dir", 4, STRING),
            _field("viewport", 5, MESSAGE, "Viewport"),
            _field("devtools", 6, BOOL),
            _field("ignore_https_errors", 7, BOOL),
            _field("cdp_url", 8, STRING),
        ),
        _message(
            "InitRequest",
            _field("env", 1, STRING),
            _field("api_key", 2, STRING),
            _field("project_id", 3, STRING),
            _field("browserbase_session_id", 4, STRING),
            _field("browserbase_session_create_params_json", 5, STRING),
            _field("local_browser_launch_options", 6, MESSAGE, "LocalBrowserLaunchOptions"),
            _field("model", 7, MESSAGE, "ModelConfiguration"),
            _field("system_prompt", 8, STRING),
            _field("self_heal", 9, BOOL),
            _field("experimental", 10, BOOL),
            _field("dom_settle_timeout_ms", 11, INT32),
            _field("cache_dir", 12, STRING),
            _field("verbose", 13, INT32),
            _field("log_inference_to_file", 14, BOOL),
            _field("disable_pino", 15, BOOL),
            _field("wait_for_captcha_solves", 16, BOOL),
            _field("act_timeout_ms", 17, INT32),
        ),
        _message("InitResult", _field("session_id", 1, STRING)),
        _event_response("InitResponse", "result", MESSAGE, "InitResult"),
        _act_request(),
        _event_response("ActResponse", "success", BOOL),
        _message(
            "ExtractRequest",
            _field("instruction", 1, STRING),
            _field("schema_json", 2, STRING),
            _field("model", 3, MESSAGE, "ModelConfiguration"),
            _field("timeout_ms", 4, INT32),
            _field("selector", 5, STRING),
            _field("frame_id", 6, STRING),
        ),
        _event_response("ExtractResponse", "data_json", STRING),
        _message(
            "ObserveRequest",
            _field("instruction", 1, STRING),
            _field("model", 2, MESSAGE, "ModelConfiguration"),
            _field("timeout_ms", 3, INT32),
            _field("selector", 4, STRING),
            _field("only_selectors", 5, STRING, repeated=True),
            _field("frame_id", 6, STRING),
        ),
        _event_response("ObserveResponse", "elements_json", STRING),
        _message(
            "ExecuteRequest",
            _field("session_id", 1, STRING),
            _field("instruction", 2, STRING),
            _field("frame_id", 3, STRING),
            _field("agent_config_json", 4, STRING),
            _field("execute_options_json", 5, STRING),
        ),
        _event_response("ExecuteResponse", "result_json", STRING),
        _message("CloseRequest", _field("force", 1, BOOL)),
        _message("CloseResponse"),
    ]
    return descriptor_pb2.FileDescriptorProto(
        name="stagehand/v1/stagehand.proto",
        package=PACKAGE,
        syntax="proto3",
        message_type=messages,
    )


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())


def message_class(name: str) -> type[Message]:
    """Return the message class for a `stagehand.v1` message name."""
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


def method_path(method: str) -> str:
    """Fully-qualified gRPC method path, e.g. /stagehand.v1.StagehandService/Act."""
    return f"/{PACKAGE}.{SERVICE}/{method}"

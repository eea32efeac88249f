"""Unit tests for the event-stream wire codec.

Covers request encoding, incremental SSE decoding and the loop-back
request round trip.
"""

from __future__ import annotations

import json

import pytest

from stagehand_sdk.errors import DecodeFailure, NotStartedError
from stagehand_sdk.protocol import Operation, OperationKind
from stagehand_sdk.wire import EventStreamCodec, EventStreamDecoder


def _event(payload: dict, newline: bytes = b"\n") -> bytes:
    return b"data: " + json.dumps(payload, ensure_ascii=False).encode() + newline + newline


TRANSCRIPT = (
    b": keep-alive\n\n"
    + _event({"type": "log", "data": {"category": "nav", "message": "navigating é"}})
    + _event({"type": "system", "data": {"status": "running"}})
    + _event({"type": "system", "data": {"status": "finished", "result": {"success": True}}})
)


def _decode_all(chunks: list[bytes]) -> list[tuple[str, object]]:
    decoder = EventStreamDecoder("op_1")
    envelopes = []
    for chunk in chunks:
        envelopes.extend(decoder.feed(chunk))
    envelopes.extend(decoder.flush())
    return [(e.kind, e.payload) for e in envelopes]


# =============================================================================
# Decoding
# =============================================================================


class TestEventStreamDecoder:
    """Incremental SSE parsing."""

    def test_single_chunk(self):
        assert _decode_all([TRANSCRIPT]) == [
            ("log", {"category": "nav", "message": "navigating é"}),
            ("progress", {"status": "running"}),
            ("result", {"success": True}),
        ]

    def test_chunk_boundary_invariance(self):
        """Every two-way and byte-by-byte split decodes identically."""
        expected = _decode_all([TRANSCRIPT])
        for cut in range(len(TRANSCRIPT) + 1):
            assert _decode_all([TRANSCRIPT[:cut], TRANSCRIPT[cut:]]) == expected, cut
        assert _decode_all([bytes([b]) for b in TRANSCRIPT]) == expected

    def test_multibyte_utf8_split(self):
        data = _event({"type": "log", "data": {"message": "日本語"}})
        split = data.index("日".encode()) + 1
        assert _decode_all([data[:split], data[split:]]) == [("log", {"message": "日本語"})]

    @pytest.mark.parametrize("newline", [b"\r\n", b"\r", b"\n"])
    def test_line_endings(self, newline: bytes):
        data = _event({"type": "log", "data": {"message": "hi"}}, newline)
        assert _decode_all([data]) == [("log", {"message": "hi"})]

    def test_crlf_split_between_cr_and_lf(self):
        data = _event({"type": "log", "data": {"message": "hi"}}, b"\r\n")
        cut = data.index(b"\r") + 1
        decoder = EventStreamDecoder()
        assert decoder.feed(data[:cut]) == []
        assert [e.kind for e in decoder.feed(data[cut:])] == ["log"]

    def test_partial_event_not_emitted(self):
        decoder = EventStreamDecoder()
        envelopes, remainder = decoder.decode(b'data: {"type": "log", "data": {}}\n')
        assert envelopes == []
        assert remainder == b""

        envelopes, remainder = decoder.decode(b"data: {")
        assert envelopes == []
        assert remainder == b"data: {"

    def test_multiline_data_joined(self):
        data = b'data: {"type": "log",\ndata: "data": {"message": "x"}}\n\n'
        assert _decode_all([data]) == [("log", {"message": "x"})]

    def test_system_error_maps_to_error(self):
        data = _event({"type": "system", "data": {"status": "error", "error": "boom"}})
        assert _decode_all([data]) == [("error", {"error": "boom"})]

    def test_unknown_type_passes_through(self):
        data = _event({"type": "telemetry", "data": {"x": 1}})
        assert _decode_all([data]) == [("telemetry", {"x": 1})]

    def test_event_name_used_when_type_missing(self):
        data = b'event: log\ndata: {"data": {"message": "m"}}\n\n'
        assert _decode_all([data]) == [("log", {"message": "m"})]

    def test_incomplete_trailing_event_discarded(self):
        data = _event({"type": "log", "data": {}}) + b'data: {"type": "log"'
        assert _decode_all([data]) == [("log", {})]

    def test_malformed_event_raises_with_raw_bytes(self):
        decoder = EventStreamDecoder()
        good = _event({"type": "log", "data": {}})
        bad = b"data: {not json\n\n"

        received = []
        with pytest.raises(DecodeFailure) as exc_info:
            for envelope in decoder.iter_feed(good + bad + good):
                received.append(envelope)

        assert [e.kind for e in received] == ["log"]
        assert b"{not json" in exc_info.value.raw
        # The bad event was consumed; the next one is still decodable
        assert [e.kind for e in decoder.feed(b"")] == ["log"]

    def test_non_object_data_is_malformed(self):
        decoder = EventStreamDecoder()
        with pytest.raises(DecodeFailure):
            decoder.feed(b"data: [1, 2]\n\n")

    def test_correlation_id_attached(self):
        decoder = EventStreamDecoder("op_xyz")
        (envelope,) = decoder.feed(_event({"type": "log", "data": {}}))
        assert envelope.correlation_id == "op_xyz"


# =============================================================================
# Encoding
# =============================================================================


class TestEventStreamEncoding:
    """Operations to REST requests."""

    def setup_method(self):
        self.codec = EventStreamCodec()

    def _session_op(self, operation: Operation) -> Operation:
        return operation.model_copy(update={"session_id": "sess_1", "model_api_key": "sk-test"})

    def test_start_request(self):
        operation = Operation.start(
            {
                "env": "BROWSERBASE",
                "api_key": "bb_key",
                "model": {"model_name": "openai/gpt-4o", "api_key": "sk"},
                "dom_settle_timeout_ms": 500,
                "browserbase_session_id": "bb_1",
            }
        )
        request = self.codec.encode(operation)
        body = json.loads(request.body)

        assert request.method == "POST"
        assert request.path == "/sessions/start"
        assert request.streaming is True
        assert request.headers["x-stream-response"] == "true"
        assert body == {
            "env": "BROWSERBASE",
            "modelName": "openai/gpt-4o",
            "domSettleTimeoutMs": 500,
            "browserbaseSessionID": "bb_1",
        }

    def test_start_launch_options_camel_cased(self):
        operation = Operation.start(
            {
                "env": "LOCAL",
                "local_browser_launch_options": {
                    "executable_path": "/usr/bin/chromium",
                    "user_data_dir": "/tmp/profile",
                    "viewport": {"width": 1280, "height": 720},
                },
                "browserbase_session_create_params": {"project_id": "opaque"},
            }
        )
        body = json.loads(self.codec.encode(operation).body)

        assert body["localBrowserLaunchOptions"] == {
            "executablePath": "/usr/bin/chromium",
            "userDataDir": "/tmp/profile",
            "viewport": {"width": 1280, "height": 720},
        }
        assert body["browserbaseSessionCreateParams"] == {"project_id": "opaque"}

    def test_act_request(self):
        operation = self._session_op(
            Operation.act("click login", model="openai/gpt-4o", variables={"user": "bob"}, timeout_ms=5000)
        )
        request = self.codec.encode(operation)

        assert request.path == "/sessions/sess_1/act"
        assert request.headers["x-bb-session-id"] == "sess_1"
        assert request.headers["x-model-api-key"] == "sk-test"
        assert json.loads(request.body) == {
            "input": "click login",
            "options": {"model": "openai/gpt-4o", "variables": {"user": "bob"}, "timeoutMs": 5000},
        }

    def test_execute_uses_agent_execute_path(self):
        operation = self._session_op(Operation.execute({"provider": "openai"}, {"instruction": "go"}))
        request = self.codec.encode(operation)
        assert request.path == "/sessions/sess_1/agentExecute"
        assert json.loads(request.body) == {
            "agentConfig": {"provider": "openai"},
            "executeOptions": {"instruction": "go"},
        }

    def test_end_is_not_streamed(self):
        request = self.codec.encode(self._session_op(Operation.end(force=True)))
        assert request.path == "/sessions/sess_1/end"
        assert request.streaming is False
        assert "x-stream-response" not in request.headers
        assert json.loads(request.body) == {"force": True}

    def test_session_operation_without_id_is_rejected(self):
        with pytest.raises(NotStartedError):
            self.codec.encode(Operation.act("click"))

    def test_schema_forwarded_unchanged(self):
        schema = {"type": "object", "properties": {"title": {"type": "string"}}, "x-custom": [1, None]}
        operation = self._session_op(Operation.extract("title", schema))
        assert json.loads(self.codec.encode(operation).body)["schema"] == schema

    def test_decode_body(self):
        envelope = self.codec.decode_body(b'{"ok": true}', "op_1")
        assert envelope.kind == "result"
        assert envelope.payload == {"ok": True}
        assert self.codec.decode_body(b"").payload == {}


class TestEventStreamRoundTrip:
    """encode() then decode_request() reproduces the operation."""

    @pytest.mark.parametrize(
        "operation",
        [
            Operation.start({"env": "LOCAL", "model": "openai/gpt-4o", "self_heal": True, "verbose": 1}),
            Operation.start(
                {"env": "LOCAL", "local_browser_launch_options": {"user_data_dir": "/tmp/p", "headless": True}}
            ),
            Operation.act("go to example.com", model="openai/gpt-4o", variables={"a": "b"}, timeout_ms=5000),
            Operation.extract("get title", {"type": "object"}, selector="#main", frame_id="f1"),
            Operation.observe("buttons", model={"model_name": "x/y", "base_url": "http://m"}, only_selectors=["a"]),
            Operation.execute({"provider": "openai"}, {"instruction": "go", "maxSteps": 3}),
            Operation.end(force=True),
        ],
        ids=lambda op: op.kind.value,
    )
    def test_round_trip(self, operation: Operation):
        codec = EventStreamCodec()
        request = codec.encode(operation.model_copy(update={"session_id": "sess_1"}))
        decoded = codec.decode_request(operation.kind, request.body)

        assert decoded.kind == operation.kind
        assert decoded.params == operation.params

    def test_invalid_body(self):
        with pytest.raises(DecodeFailure):
            EventStreamCodec().decode_request(OperationKind.ACT, b"{")

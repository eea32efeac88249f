"""Unit tests for the error taxonomy and normalizer."""

from __future__ import annotations

import json

import grpc
import httpx
import pytest
from google.protobuf.message import DecodeError

from stagehand_sdk.errors import (
    MAX_DIAGNOSTIC_BYTES,
    AlreadyStartedError,
    ApiError,
    ConnectionLostError,
    DecodeFailure,
    MalformedPayloadError,
    MissingCredentialError,
    PreconditionError,
    StagehandTimeoutError,
    TransportError,
    UnauthorizedError,
    normalize_error,
    normalize_remote_failure,
)


def _status_error(status: int, body: bytes = b"") -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.example.com/v1/sessions/start")
    response = httpx.Response(status, content=body, request=request)
    return httpx.HTTPStatusError("failed", request=request, response=response)


def _rpc_error(code: grpc.StatusCode, details: str = "details") -> grpc.aio.AioRpcError:
    return grpc.aio.AioRpcError(code, grpc.aio.Metadata(), grpc.aio.Metadata(), details=details)


class TestTaxonomy:
    def test_codes_are_stable(self):
        assert TransportError().code == "transport"
        assert ConnectionLostError().code == "connection_lost"
        assert StagehandTimeoutError().code == "timeout"
        assert AlreadyStartedError().code == "already_started"

    def test_connection_lost_is_transport(self):
        assert isinstance(ConnectionLostError(), TransportError)

    def test_precondition_family(self):
        assert isinstance(AlreadyStartedError(), PreconditionError)

    def test_missing_credential_names_key(self):
        error = MissingCredentialError("BROWSERBASE_API_KEY")
        assert error.name == "BROWSERBASE_API_KEY"
        assert "BROWSERBASE_API_KEY" in str(error)

    def test_malformed_payload_truncates_raw(self):
        error = MalformedPayloadError("bad", raw=b"x" * 1000)
        assert len(error.raw) == MAX_DIAGNOSTIC_BYTES


class TestNormalizeHttp:
    """httpx failures."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_unauthorized(self, status: int):
        error = normalize_error(_status_error(status, b'{"message": "bad key"}'))
        assert isinstance(error, UnauthorizedError)
        assert str(error) == "bad key"

    def test_other_status_is_api_error(self):
        error = normalize_error(_status_error(500, b'{"error": "kaput"}'))
        assert isinstance(error, ApiError)
        assert error.status_code == 500
        assert "kaput" in str(error)

    def test_non_json_body(self):
        error = normalize_error(_status_error(502, b"<html>bad gateway</html>"))
        assert isinstance(error, ApiError)
        assert "bad gateway" in str(error)

    def test_timeout(self):
        assert isinstance(normalize_error(httpx.ReadTimeout("slow")), StagehandTimeoutError)

    def test_read_error_mid_stream(self):
        assert isinstance(normalize_error(httpx.ReadError("reset")), ConnectionLostError)
        assert isinstance(normalize_error(httpx.RemoteProtocolError("eof")), ConnectionLostError)

    def test_connect_error(self):
        error = normalize_error(httpx.ConnectError("refused"))
        assert type(error) is TransportError


class TestNormalizeRpc:
    """grpc.aio failures."""

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            (grpc.StatusCode.UNAUTHENTICATED, UnauthorizedError),
            (grpc.StatusCode.PERMISSION_DENIED, UnauthorizedError),
            (grpc.StatusCode.DEADLINE_EXCEEDED, StagehandTimeoutError),
            (grpc.StatusCode.UNAVAILABLE, TransportError),
            (grpc.StatusCode.INTERNAL, ApiError),
            (grpc.StatusCode.INVALID_ARGUMENT, ApiError),
        ],
    )
    def test_status_mapping(self, code: grpc.StatusCode, expected: type):
        assert type(normalize_error(_rpc_error(code))) is expected

    def test_details_preserved(self):
        error = normalize_error(_rpc_error(grpc.StatusCode.INTERNAL, "browser crashed"))
        assert "browser crashed" in str(error)


class TestNormalizeOther:
    def test_passthrough(self):
        error = ApiError("x")
        assert normalize_error(error) is error

    def test_decode_failure(self):
        error = normalize_error(DecodeFailure("bad frame", raw=b"\x00\x01"))
        assert isinstance(error, MalformedPayloadError)
        assert error.raw == b"\x00\x01"

    def test_protobuf_decode_error(self):
        assert isinstance(normalize_error(DecodeError("truncated")), MalformedPayloadError)

    def test_json_decode_error(self):
        with pytest.raises(json.JSONDecodeError) as exc_info:
            json.loads("{oops")
        error = normalize_error(exc_info.value)
        assert isinstance(error, MalformedPayloadError)
        assert error.raw == b"{oops"

    def test_builtin_timeout(self):
        assert isinstance(normalize_error(TimeoutError()), StagehandTimeoutError)

    def test_os_error(self):
        assert type(normalize_error(ConnectionRefusedError("refused"))) is TransportError

    def test_deterministic(self):
        exc = httpx.ReadError("reset")
        assert type(normalize_error(exc)) is type(normalize_error(exc))


class TestNormalizeRemoteFailure:
    def test_message(self):
        error = normalize_remote_failure({"error": "element not found"})
        assert isinstance(error, ApiError)
        assert str(error) == "element not found"

    def test_unauthorized_status(self):
        assert isinstance(normalize_remote_failure({"error": "no", "status_code": 401}), UnauthorizedError)

    def test_non_dict(self):
        assert str(normalize_remote_failure("boom")) == "boom"
        assert str(normalize_remote_failure(None)) == "Unknown server error"

"""Unified error taxonomy and the normalizer that maps transport failures into it.

Two unrelated failure domains feed this module:
- HTTP/SSE failures raised by httpx
- RPC failures raised by grpc.aio

`normalize_error` collapses both (plus codec decode failures and timeouts)
into the `StagehandError` hierarchy. It performs no I/O and returns the same
error class for the same raw failure.
"""

from __future__ import annotations

import json
from typing import Any

import grpc
import httpx
from google.protobuf.message import DecodeError

# Raw bytes attached to MalformedPayloadError are truncated to this size
MAX_DIAGNOSTIC_BYTES = 256


class StagehandError(Exception):
    """Base class for every caller-visible error."""

    code = "stagehand_error"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail

    def __str__(self) -> str:
        return self.detail or self.code


class TransportError(StagehandError):
    """Connection-level failure (refused, reset, DNS, TLS)."""

    code = "transport"


class ConnectionLostError(TransportError):
    """An open event stream dropped mid-flight. Not retried."""

    code = "connection_lost"


class MalformedPayloadError(StagehandError):
    """A frame or event could not be parsed."""

    code = "malformed_payload"

    def __init__(self, detail: str = "", raw: bytes = b"") -> None:
        super().__init__(detail)
        self.raw = raw[:MAX_DIAGNOSTIC_BYTES]


class ApiError(StagehandError):
    """The remote service returned a structured application-level failure."""

    code = "api"

    def __init__(self, detail: str = "", status_code: int | None = None) -> None:
        super().__init__(detail)
        self.status_code = status_code


class UnauthorizedError(StagehandError):
    """Credentials were rejected by the remote service."""

    code = "unauthorized"


class StagehandTimeoutError(StagehandError):
    """An operation exceeded its time bound."""

    code = "timeout"

    def __init__(self, detail: str = "Operation timed out") -> None:
        super().__init__(detail)


class UnexpectedEndOfStreamError(StagehandError):
    """The transport closed before a terminal event was observed."""

    code = "unexpected_end_of_stream"

    def __init__(self, detail: str = "Stream closed before a terminal event") -> None:
        super().__init__(detail)


class MissingCredentialError(StagehandError):
    """Required configuration was absent at connect/start time."""

    code = "missing_credential"

    def __init__(self, name: str) -> None:
        super().__init__(f"Missing credential: {name}")
        self.name = name


class PreconditionError(StagehandError):
    """Local lifecycle violation. Raised without touching the network."""

    code = "precondition"


class NotStartedError(PreconditionError):
    code = "not_started"

    def __init__(self, detail: str = "Session has not been started") -> None:
        super().__init__(detail)


class AlreadyStartedError(PreconditionError):
    code = "already_started"

    def __init__(self, detail: str = "Session has already been started") -> None:
        super().__init__(detail)


class AlreadyEndedError(PreconditionError):
    code = "already_ended"

    def __init__(self, detail: str = "Session has already ended") -> None:
        super().__init__(detail)


class DecodeFailure(ValueError):
    """Raised by the wire codecs; normalized into MalformedPayloadError."""

    def __init__(self, message: str, raw: bytes = b"") -> None:
        super().__init__(message)
        self.raw = raw


_UNAUTHORIZED_STATUS = {401, 403}

_RPC_UNAUTHORIZED = {grpc.StatusCode.UNAUTHENTICATED, grpc.StatusCode.PERMISSION_DENIED}
_RPC_TRANSPORT = {grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.CANCELLED}


def _response_detail(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error response body."""
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError, httpx.ResponseNotRead):
        try:
            return response.text[:MAX_DIAGNOSTIC_BYTES] or response.reason_phrase
        except httpx.ResponseNotRead:
            return response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if isinstance(body.get(key), str):
                return body[key]
    return json.dumps(body)[:MAX_DIAGNOSTIC_BYTES]


def _normalize_http(exc: httpx.HTTPError) -> StagehandError:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        detail = _response_detail(exc.response)
        if status in _UNAUTHORIZED_STATUS:
            return UnauthorizedError(detail)
        return ApiError(f"HTTP {status}: {detail}", status_code=status)
    if isinstance(exc, httpx.TimeoutException):
        return StagehandTimeoutError(f"HTTP timeout: {exc}")
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.ReadError)):
        return ConnectionLostError(f"Connection lost: {exc}")
    return TransportError(f"HTTP transport error: {exc}")


def _normalize_rpc(exc: grpc.aio.AioRpcError) -> StagehandError:
    status = exc.code()
    detail = exc.details() or status.name
    if status in _RPC_UNAUTHORIZED:
        return UnauthorizedError(detail)
    if status == grpc.StatusCode.DEADLINE_EXCEEDED:
        return StagehandTimeoutError(f"RPC deadline exceeded: {detail}")
    if status in _RPC_TRANSPORT:
        return TransportError(f"RPC {status.name.lower()}: {detail}")
    return ApiError(f"RPC {status.name.lower()}: {detail}")


def normalize_error(exc: BaseException) -> StagehandError:
    """Map any raw failure to the unified taxonomy.

    Already-normalized errors pass through unchanged.
    """
    if isinstance(exc, StagehandError):
        return exc
    if isinstance(exc, DecodeFailure):
        return MalformedPayloadError(str(exc), raw=exc.raw)
    if isinstance(exc, DecodeError):
        return MalformedPayloadError(f"Invalid protobuf message: {exc}")
    if isinstance(exc, json.JSONDecodeError):
        return MalformedPayloadError(f"Invalid JSON: {exc}", raw=exc.doc.encode("utf-8"))
    if isinstance(exc, httpx.HTTPError):
        return _normalize_http(exc)
    if isinstance(exc, grpc.aio.AioRpcError):
        return _normalize_rpc(exc)
    if isinstance(exc, TimeoutError):
        return StagehandTimeoutError()
    if isinstance(exc, (ConnectionError, OSError)):
        return TransportError(f"Connection failed: {exc}")
    return TransportError(f"{type(exc).__name__}: {exc}")


def normalize_remote_failure(payload: Any) -> StagehandError:
    """Map a structured failure reported inside a stream by the remote side."""
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("message") or "Unknown server error"
        if not isinstance(message, str):
            message = json.dumps(message)
        if payload.get("status_code") in _UNAUTHORIZED_STATUS:
            return UnauthorizedError(message)
        return ApiError(message, status_code=payload.get("status_code"))
    return ApiError(str(payload) if payload else "Unknown server error")

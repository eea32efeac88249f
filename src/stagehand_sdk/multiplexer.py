"""Response multiplexer.

Adapts a transport's raw Envelope sequence into the typed event sequence of
one operation. For every operation kind a decoding table says which envelope
kinds map to which events; terminal events close the sequence.

Guarantees:
- The sequence is finite and its last event is terminal: either the
  operation's result event or an ErrorEvent.
- A stream that ends without a terminal event yields UnexpectedEndOfStream.
- Unknown envelope kinds become diagnostic LogEvents instead of failures.
- A timeout bounds time-to-first-byte and total duration.
- Cancelling releases the underlying connection within a grace period.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any

from .errors import (
    DecodeFailure,
    UnexpectedEndOfStreamError,
    normalize_error,
    normalize_remote_failure,
)
from .protocol.envelope import Envelope
from .protocol.events import (
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
from .protocol.operations import Operation, OperationKind
from .transport.base import CancellationToken, EnvelopeStream, Transport

logger = logging.getLogger(__name__)

Decoder = Callable[[Any], TypedEvent]


def _log(payload: Any) -> LogEvent:
    if not isinstance(payload, dict):
        return LogEvent(category="log", message=str(payload))
    auxiliary = payload.get("auxiliary")
    if auxiliary is not None and not isinstance(auxiliary, str):
        auxiliary = json.dumps(auxiliary)
    return LogEvent(
        category=str(payload.get("category", "")),
        message=str(payload.get("message", "")),
        auxiliary=auxiliary,
    )


def _progress(payload: Any) -> ProgressEvent:
    if isinstance(payload, dict):
        return ProgressEvent(message=str(payload.get("status", "")))
    return ProgressEvent(message=str(payload))


def _success(payload: Any) -> SuccessEvent:
    if isinstance(payload, bool):
        return SuccessEvent(success=payload)
    if isinstance(payload, dict):
        return SuccessEvent(success=bool(payload.get("success", True)))
    raise DecodeFailure(f"Unexpected act result: {payload!r}")


def _started(payload: Any) -> StartedEvent:
    session_id = None
    if isinstance(payload, dict):
        session_id = payload.get("session_id") or payload.get("sessionId")
    if not session_id:
        raise DecodeFailure(f"Start result carried no session id: {payload!r}")
    return StartedEvent(session_id=session_id, result=payload)


def _ended(payload: Any) -> EndedEvent:
    return EndedEvent(result=payload if isinstance(payload, dict) else None)


def _text(event_cls: type[TypedEvent], field: str) -> Decoder:
    """Payload is already JSON text (RPC string fields)."""

    def decode(payload: Any) -> TypedEvent:
        if not isinstance(payload, str):
            raise DecodeFailure(f"Expected JSON text for {field}, got {type(payload).__name__}")
        return event_cls(**{field: payload})

    return decode


def _json(event_cls: type[TypedEvent], field: str) -> Decoder:
    """Payload is a JSON value (event-stream results); re-serialize it."""

    def decode(payload: Any) -> TypedEvent:
        return event_cls(**{field: json.dumps(payload)})

    return decode


_COMMON: dict[str, Decoder] = {"log": _log, "progress": _progress}

DECODING_TABLES: dict[OperationKind, dict[str, Decoder]] = {
    OperationKind.START: {**_COMMON, "result": _started},
    OperationKind.ACT: {**_COMMON, "success": _success, "result": _success},
    OperationKind.EXTRACT: {
        **_COMMON,
        "data_json": _text(DataJsonEvent, "data_json"),
        "result": _json(DataJsonEvent, "data_json"),
    },
    OperationKind.OBSERVE: {
        **_COMMON,
        "elements_json": _text(ElementsJsonEvent, "elements_json"),
        "result": _json(ElementsJsonEvent, "elements_json"),
    },
    OperationKind.EXECUTE: {
        **_COMMON,
        "result_json": _text(ResultJsonEvent, "result_json"),
        "result": _json(ResultJsonEvent, "result_json"),
    },
    OperationKind.END: {"result": _ended},
}


class OperationStream:
    """Cancellable async sequence of typed events for one operation.

    Nothing is sent until the first event is pulled. Usage:

        async with stagehand.act("click login") as events:
            async for event in events:
                ...

    or `await stream.result()` for just the terminal event.
    """

    def __init__(
        self,
        transport: Transport,
        operation: Operation,
        cancel_grace: float = 2.0,
        on_open: Callable[[OperationStream], None] | None = None,
        on_close: Callable[[OperationStream], None] | None = None,
    ):
        self.operation = operation
        self.token = CancellationToken()
        self.cancel_grace = cancel_grace
        self.terminal_event: TypedEvent | None = None
        self._transport = transport
        self._table = DECODING_TABLES[operation.kind]
        self._on_open = on_open
        self._on_close = on_close
        self._stream: EnvelopeStream | None = None
        self._deadline: float | None = None
        self._done = False
        self._reading = False
        self._close_task: asyncio.Task[None] | None = None
        self._released = asyncio.Event()

    @property
    def kind(self) -> OperationKind:
        return self.operation.kind

    @property
    def done(self) -> bool:
        return self._done

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def __aiter__(self) -> OperationStream:
        return self

    async def __anext__(self) -> TypedEvent:
        if self._done:
            raise StopAsyncIteration

        self._reading = True
        try:
            event = await self._next_event()
        except BaseException:
            # Caller's task was cancelled mid-read
            self._reading = False
            await self._finish()
            raise
        self._reading = False

        if event is None:
            await self._finish()
            raise StopAsyncIteration
        if event.is_terminal():
            self.terminal_event = event
            await self._finish()
        return event

    async def _next_event(self) -> TypedEvent | None:
        """Next typed event, or None once cancelled."""
        try:
            if self._stream is None:
                self._open()
            envelope = await self._next_envelope()
            if envelope is None:
                return None
            return self._decode(envelope)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = normalize_error(e)
            logger.debug(f"{self.operation.kind.value} {self.operation.id} failed: {error!r}")
            return ErrorEvent(error=error, correlation_id=self.operation.id)

    def _open(self) -> None:
        if self.operation.timeout is not None:
            self._deadline = asyncio.get_running_loop().time() + self.operation.timeout
        self._stream = self._transport.open(self.operation, self.token)
        if self._on_open is not None:
            self._on_open(self)

    async def _pull(self) -> Envelope:
        assert self._stream is not None
        try:
            return await self._stream.__anext__()
        except StopAsyncIteration:
            return Envelope.end(self.operation.id)

    async def _next_envelope(self) -> Envelope | None:
        remaining = None
        if self._deadline is not None:
            remaining = self._deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                raise TimeoutError(f"{self.operation.kind.value} exceeded {self.operation.timeout_ms}ms")

        pull = asyncio.ensure_future(self._pull())
        cancelled = asyncio.ensure_future(self.token.wait())
        try:
            done, _ = await asyncio.wait(
                {pull, cancelled},
                timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancelled.cancel()
            if not pull.done():
                pull.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pull

        # A pull that ends because the token fired is a cancellation, not an end of stream
        if cancelled in done or self.token.cancelled:
            return None
        if pull in done:
            return pull.result()
        raise TimeoutError(f"{self.operation.kind.value} exceeded {self.operation.timeout_ms}ms")

    def _decode(self, envelope: Envelope) -> TypedEvent:
        correlation_id = self.operation.id
        if envelope.end_of_stream:
            return ErrorEvent(error=UnexpectedEndOfStreamError(), correlation_id=correlation_id)
        if envelope.kind == "error":
            return ErrorEvent(error=normalize_remote_failure(envelope.payload), correlation_id=correlation_id)

        decoder = self._table.get(envelope.kind)
        if decoder is None:
            logger.debug(f"Unrecognized {envelope.kind!r} event on {self.operation.kind.value}")
            return LogEvent(
                category=envelope.kind,
                message=f"Unrecognized event kind '{envelope.kind}'",
                auxiliary=json.dumps(envelope.payload, default=str),
                correlation_id=correlation_id,
            )

        try:
            event = decoder(envelope.payload)
        except DecodeFailure:
            raise
        except (TypeError, ValueError, KeyError) as e:
            raise DecodeFailure(f"Cannot decode {envelope.kind!r} event: {e}") from e
        event.correlation_id = correlation_id
        return event

    def cancel(self) -> None:
        """Signal cancellation. The connection is released in the background
        (or by the task currently reading, which then stops)."""
        if self._done:
            return
        self.token.cancel()
        if not self._reading:
            self._done = True
            self._close_task = asyncio.get_running_loop().create_task(self._release())

    async def aclose(self) -> None:
        """Cancel if still running and wait until the connection is released.

        When another task is mid-read, that task performs the release and
        this call waits for it.
        """
        if not self._done:
            self.token.cancel()
            if not self._reading:
                await self._finish()
        await self._released.wait()

    async def _finish(self) -> None:
        self._done = True
        await self._release()

    async def _release(self) -> None:
        stream, self._stream = self._stream, None
        try:
            if stream is not None:
                try:
                    await asyncio.wait_for(stream.aclose(), timeout=self.cancel_grace)
                except TimeoutError:
                    logger.warning(f"Stream for {self.operation.id} did not close within {self.cancel_grace}s")
                except Exception as e:
                    logger.debug(f"Error closing stream for {self.operation.id}: {e}")
            if self._on_close is not None:
                on_close, self._on_close = self._on_close, None
                on_close(self)
        finally:
            self._released.set()

    async def collect(self) -> list[TypedEvent]:
        """Drain the sequence into a list."""
        return [event async for event in self]

    async def result(self) -> TypedEvent:
        """Drain the sequence and return its terminal event.

        Raises:
            StagehandError: The normalized error if the operation failed
        """
        async for _ in self:
            pass
        event = self.terminal_event
        if event is None:
            raise UnexpectedEndOfStreamError("Operation was cancelled before a terminal event")
        if isinstance(event, ErrorEvent):
            raise event.error
        return event

    async def __aenter__(self) -> OperationStream:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

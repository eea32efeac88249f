"""Mock transport for testing.

Allows scripting per-operation transcripts and recording operations.
No actual I/O - everything is in-memory.

Usage:
    transport = MockTransport()
    transport.set_response(OperationKind.ACT, [
        Envelope(kind="log", payload={"category": "nav", "message": "navigating"}),
        Envelope(kind="success", payload=True),
    ])

    stagehand = await Stagehand(transport=transport).connect()
    await stagehand.start(V3Options())
    events = await stagehand.act("go to example.com").collect()

    assert transport.recorded_operations[1].kind == OperationKind.ACT
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from ..protocol.envelope import Envelope
from ..protocol.operations import Operation, OperationKind
from .base import BaseTransport, CancellationToken, Destination, EnvelopeStream, TransportKind


@dataclass
class ScriptedResponse:
    """Canned transcript for one operation kind.

    Items are yielded in order; an exception item is raised at that point.
    With `hang=True` the stream never closes after the last item.
    """

    items: list[Envelope | BaseException] = field(default_factory=list)
    hang: bool = False
    end_of_stream: bool = True
    delay: float = 0.0


def _default_response(kind: OperationKind) -> ScriptedResponse:
    payload = {"session_id": "mock_session"} if kind == OperationKind.START else {}
    return ScriptedResponse(items=[Envelope(kind="result", payload=payload)])


class MockEnvelopeStream(EnvelopeStream):
    """Replays a ScriptedResponse."""

    def __init__(self, operation: Operation, token: CancellationToken, script: ScriptedResponse):
        super().__init__(operation, token)
        self.script = script
        self.opened = False
        self.released = False

    @property
    def is_open(self) -> bool:
        return self.opened and not self.released

    async def _iterate(self) -> AsyncIterator[Envelope]:
        self.opened = True
        for item in self.script.items:
            if self.script.delay:
                await asyncio.sleep(self.script.delay)
            if isinstance(item, BaseException):
                raise item
            yield item.model_copy(update={"correlation_id": self.operation.id})

        if self.script.hang:
            await asyncio.Event().wait()
        if self.script.end_of_stream:
            yield Envelope.end(self.operation.id)
        self.released = True

    async def _release(self) -> None:
        self.released = True


class MockTransport(BaseTransport):
    """In-memory transport recording every opened operation."""

    def __init__(self, destination: Destination | None = None) -> None:
        super().__init__(destination or Destination(TransportKind.RPC, "mock://stagehand"))
        self._responses: dict[OperationKind, ScriptedResponse] = {}
        self._recorded: list[Operation] = []
        self.streams: list[MockEnvelopeStream] = []
        self.connect_calls = 0

    @property
    def recorded_operations(self) -> list[Operation]:
        """Get all operations opened through this transport."""
        return self._recorded.copy()

    @property
    def call_count(self) -> int:
        return len(self._recorded)

    def set_response(
        self,
        kind: OperationKind,
        items: list[Envelope | BaseException],
        hang: bool = False,
        end_of_stream: bool = True,
        delay: float = 0.0,
    ) -> None:
        """Set the canned transcript for an operation kind."""
        self._responses[kind] = ScriptedResponse(list(items), hang, end_of_stream, delay)

    def clear(self) -> None:
        self._recorded.clear()
        self._responses.clear()
        self.streams.clear()

    async def _do_connect(self) -> None:
        self.connect_calls += 1

    async def _do_close(self) -> None:
        pass

    def open(self, operation: Operation, token: CancellationToken) -> MockEnvelopeStream:
        self._recorded.append(operation)
        script = self._responses.get(operation.kind) or _default_response(operation.kind)
        stream = MockEnvelopeStream(operation, token, script)
        self.streams.append(stream)
        return stream

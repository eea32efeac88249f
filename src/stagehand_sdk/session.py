"""Session lifecycle state machine.

    DISCONNECTED -> CONNECTED -> STARTED -> ENDED
                        \\______________________/

States only move forward. Every precondition check here is local: a
violation raises a PreconditionError before any request is built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .errors import AlreadyEndedError, AlreadyStartedError, NotStartedError
from .protocol.operations import Operation
from .transport.base import Destination

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Session lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    STARTED = "started"
    ENDED = "ended"


# Legal forward transitions
TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DISCONNECTED: frozenset({SessionState.CONNECTED}),
    SessionState.CONNECTED: frozenset({SessionState.STARTED, SessionState.ENDED}),
    SessionState.STARTED: frozenset({SessionState.ENDED}),
    SessionState.ENDED: frozenset(),
}


@dataclass
class SessionMetadata:
    """What the session knows about itself."""

    state: SessionState = SessionState.DISCONNECTED
    destination: Destination | None = None
    session_id: str | None = None
    model_api_key: str | None = None
    config: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    ended_at: datetime | None = None


class SessionStateMachine:
    """Tracks lifecycle state and attaches session identity to operations.

    Owned by one facade; not safe to share across tasks that race `start`
    against other operations.
    """

    def __init__(self) -> None:
        self.metadata = SessionMetadata()
        self._start_in_flight = False

    @property
    def state(self) -> SessionState:
        return self.metadata.state

    @property
    def session_id(self) -> str | None:
        return self.metadata.session_id

    def _transition(self, target: SessionState) -> None:
        current = self.metadata.state
        if target not in TRANSITIONS[current]:
            raise self._violation(current)
        logger.debug(f"Session {current.value} -> {target.value}")
        self.metadata.state = target

    @staticmethod
    def _violation(current: SessionState) -> Exception:
        if current == SessionState.ENDED:
            return AlreadyEndedError()
        if current == SessionState.STARTED:
            return AlreadyStartedError()
        return NotStartedError(f"Illegal transition from {current.value}")

    def connected(self, destination: Destination) -> None:
        self._transition(SessionState.CONNECTED)
        self.metadata.destination = destination

    def require_can_start(self) -> None:
        state = self.metadata.state
        if state == SessionState.ENDED:
            raise AlreadyEndedError()
        if state == SessionState.STARTED or self._start_in_flight:
            raise AlreadyStartedError()
        if state != SessionState.CONNECTED:
            raise NotStartedError("Session is not connected")

    def begin_start(self, config: dict[str, Any], model_api_key: str | None = None) -> None:
        """Reserve the one allowed `start`. Raises if it is already taken."""
        self.require_can_start()
        self._start_in_flight = True
        self.metadata.config = config
        self.metadata.model_api_key = model_api_key

    def complete_start(self, session_id: str) -> None:
        self._start_in_flight = False
        self._transition(SessionState.STARTED)
        self.metadata.session_id = session_id
        self.metadata.started_at = datetime.now(UTC)
        logger.info(f"Session started: {session_id}")

    def abort_start(self) -> None:
        """A failed start leaves the session CONNECTED so it can be retried."""
        self._start_in_flight = False

    def require_started(self) -> None:
        state = self.metadata.state
        if state == SessionState.ENDED:
            raise AlreadyEndedError()
        if state != SessionState.STARTED:
            raise NotStartedError()

    def end(self) -> SessionState:
        """Move to ENDED; returns the state the session ended from."""
        previous = self.metadata.state
        if previous == SessionState.DISCONNECTED:
            raise NotStartedError("Session is not connected")
        self._transition(SessionState.ENDED)
        self._start_in_flight = False
        self.metadata.ended_at = datetime.now(UTC)
        return previous

    def prepare(self, operation: Operation) -> Operation:
        """Attach session identity (and model key) to an outgoing operation."""
        return operation.model_copy(
            update={
                "session_id": self.metadata.session_id,
                "model_api_key": self.metadata.model_api_key,
            }
        )

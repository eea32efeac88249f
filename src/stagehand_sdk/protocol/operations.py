"""Operation definitions.

An Operation is one logical call against the remote service. It carries
transport-neutral params (snake_case, opaque values left untouched); each
wire codec maps them onto its own request shape.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OperationKind(str, Enum):
    """All operations the service exposes."""

    START = "start"
    ACT = "act"
    EXTRACT = "extract"
    OBSERVE = "observe"
    EXECUTE = "execute"
    END = "end"


# Operations answered by a single response instead of a stream
UNARY_OPERATIONS = frozenset({OperationKind.END})


class Operation(BaseModel):
    """A single logical call.

    Example:
        {
            "id": "op_abc123",
            "kind": "act",
            "params": {"instruction": "click login", "variables": {}},
            "session_id": "sess_456",
            "timeout_ms": 5000
        }

    Envelopes produced for this operation carry `id` as their correlation id.
    """

    id: str = Field(default_factory=lambda: f"op_{uuid.uuid4().hex[:12]}")
    kind: OperationKind
    params: dict[str, Any] = Field(default_factory=dict)

    # Attached by the session state machine, never by the caller
    session_id: str | None = None
    model_api_key: str | None = None

    # Local bound on time-to-first-byte and total stream duration
    timeout_ms: int | None = None

    @property
    def streaming(self) -> bool:
        """Whether the remote side answers with a stream of messages."""
        return self.kind not in UNARY_OPERATIONS

    @property
    def timeout(self) -> float | None:
        """Timeout in seconds, for asyncio."""
        return self.timeout_ms / 1000 if self.timeout_ms is not None else None

    @classmethod
    def create(
        cls,
        kind: OperationKind,
        params: dict[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> Operation:
        """Factory method; drops params left as None."""
        cleaned = {k: v for k, v in (params or {}).items() if v is not None}
        return cls(kind=kind, params=cleaned, timeout_ms=timeout_ms)

    @classmethod
    def start(cls, options: dict[str, Any], timeout_ms: int | None = None) -> Operation:
        return cls.create(OperationKind.START, options, timeout_ms)

    @classmethod
    def act(
        cls,
        instruction: str,
        model: str | dict[str, Any] | None = None,
        variables: dict[str, str] | None = None,
        timeout_ms: int | None = None,
        frame_id: str | None = None,
    ) -> Operation:
        return cls.create(
            OperationKind.ACT,
            {
                "instruction": instruction,
                "model": model,
                "variables": dict(variables or {}),
                "timeout_ms": timeout_ms,
                "frame_id": frame_id,
            },
            timeout_ms,
        )

    @classmethod
    def extract(
        cls,
        instruction: str,
        schema: Any,
        model: str | dict[str, Any] | None = None,
        timeout_ms: int | None = None,
        selector: str | None = None,
        frame_id: str | None = None,
    ) -> Operation:
        return cls.create(
            OperationKind.EXTRACT,
            {
                "instruction": instruction,
                "schema": schema,
                "model": model,
                "timeout_ms": timeout_ms,
                "selector": selector,
                "frame_id": frame_id,
            },
            timeout_ms,
        )

    @classmethod
    def observe(
        cls,
        instruction: str | None = None,
        model: str | dict[str, Any] | None = None,
        timeout_ms: int | None = None,
        selector: str | None = None,
        only_selectors: list[str] | None = None,
        frame_id: str | None = None,
    ) -> Operation:
        return cls.create(
            OperationKind.OBSERVE,
            {
                "instruction": instruction,
                "model": model,
                "timeout_ms": timeout_ms,
                "selector": selector,
                "only_selectors": list(only_selectors) if only_selectors else None,
                "frame_id": frame_id,
            },
            timeout_ms,
        )

    @classmethod
    def execute(
        cls,
        agent_config: dict[str, Any],
        execute_options: dict[str, Any],
        frame_id: str | None = None,
        timeout_ms: int | None = None,
    ) -> Operation:
        return cls.create(
            OperationKind.EXECUTE,
            {
                "agent_config": agent_config,
                "execute_options": execute_options,
                "frame_id": frame_id,
            },
            timeout_ms,
        )

    @classmethod
    def end(cls, force: bool = False, timeout_ms: int | None = None) -> Operation:
        return cls.create(OperationKind.END, {"force": force}, timeout_ms)

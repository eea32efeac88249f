"""Envelope - the normalized wire unit.

Both wire codecs decode into Envelopes, so nothing above the codec needs
to know which transport produced a message.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class Envelope(BaseModel):
    """One decoded unit of wire data.

    `kind` names the payload variant (e.g. "log", "success", "result");
    `payload` is the JSON-compatible body for that variant.
    """

    kind: str
    payload: Any = None
    correlation_id: str | None = None
    end_of_stream: bool = False

    @classmethod
    def end(cls, correlation_id: str | None = None) -> Envelope:
        """Marker emitted when the underlying stream closes cleanly."""
        return cls(kind="end_of_stream", correlation_id=correlation_id, end_of_stream=True)

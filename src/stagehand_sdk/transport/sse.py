"""Event-stream transport over HTTP.

Each operation is an independent POST against the REST base URL:
- streaming operations read the response body as `text/event-stream`
- `end` reads a plain JSON body

Reconnection is never attempted; a connection dropped mid-stream surfaces
as ConnectionLostError through the normalizer.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import httpx

from ..errors import MissingCredentialError, normalize_error
from ..protocol.envelope import Envelope
from ..protocol.operations import Operation
from ..wire.sse import EventStreamCodec
from .base import BaseTransport, CancellationToken, Credentials, Destination, EnvelopeStream

logger = logging.getLogger(__name__)


class SSEEnvelopeStream(EnvelopeStream):
    """Envelopes from one HTTP response."""

    def __init__(
        self,
        operation: Operation,
        token: CancellationToken,
        client: httpx.AsyncClient,
        codec: EventStreamCodec,
        headers: dict[str, str],
    ):
        super().__init__(operation, token)
        self._client = client
        self._codec = codec
        self._headers = headers
        self._response: httpx.Response | None = None

    @property
    def is_open(self) -> bool:
        return self._response is not None and not self._response.is_closed

    async def _iterate(self) -> AsyncIterator[Envelope]:
        operation = self.operation
        encoded = self._codec.encode(operation)
        request = self._client.build_request(
            encoded.method,
            encoded.path,
            content=encoded.body,
            headers={**self._headers, **encoded.headers},
        )

        self._response = await self._client.send(request, stream=True)
        response = self._response
        try:
            if response.is_error:
                await response.aread()
                response.raise_for_status()

            if not encoded.streaming:
                body = await response.aread()
                yield self._codec.decode_body(body, operation.id)
                yield Envelope.end(operation.id)
                return

            decoder = self._codec.decoder(operation.id)
            async for chunk in response.aiter_bytes():
                for envelope in decoder.iter_feed(chunk):
                    yield envelope
            for envelope in decoder.flush():
                yield envelope
            yield Envelope.end(operation.id)
        finally:
            # Also runs when an abandoned generator is finalized
            await response.aclose()

    async def _release(self) -> None:
        if self._response is not None and not self._response.is_closed:
            await self._response.aclose()
            logger.debug(f"Closed event stream for {self.operation.id}")


class EventStreamTransport(BaseTransport):
    """Transport over HTTP REST + SSE.

    `connect` makes no network call; an unreachable server is reported by
    the first operation.
    """

    def __init__(
        self,
        destination: Destination,
        credentials: Credentials | None = None,
        timeout: float = 30.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(destination, credentials)
        if not self.credentials.api_key:
            raise MissingCredentialError("BROWSERBASE_API_KEY")
        if not self.credentials.project_id:
            raise MissingCredentialError("BROWSERBASE_PROJECT_ID")

        self.timeout = timeout
        self.codec = EventStreamCodec()
        self._http_transport = http_transport
        self._http_client: httpx.AsyncClient | None = None

    @property
    def headers(self) -> dict[str, str]:
        return {
            "x-bb-api-key": self.credentials.api_key or "",
            "x-bb-project-id": self.credentials.project_id or "",
            "x-language": "python",
        }

    async def _do_connect(self) -> None:
        self._http_client = httpx.AsyncClient(
            base_url=self.destination.address,
            timeout=httpx.Timeout(self.timeout, read=None),  # No read timeout for SSE
            transport=self._http_transport,
        )

    async def _do_close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def open(self, operation: Operation, token: CancellationToken) -> SSEEnvelopeStream:
        if self._http_client is None or not self.is_connected:
            raise normalize_error(ConnectionError("HTTP client not connected"))
        return SSEEnvelopeStream(operation, token, self._http_client, self.codec, self.headers)

"""Stagehand client.

One object per remote browser session. Works with the RPC, event-stream, or
mock transports; nothing here branches on which one is in use.

Usage:
    async with await connect(Destination.rpc()) as stagehand:
        await stagehand.start(V3Options(model="openai/gpt-4o"))

        async for event in stagehand.act("go to example.com", timeout_ms=5000):
            print(event)

        data = await stagehand.extract("get the title", {"type": "object"}).result()
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

from pydantic import BaseModel

from .config import (
    API_KEY_ENV,
    PROJECT_ID_ENV,
    AgentConfig,
    AgentExecuteOptions,
    ClientConfig,
    Env,
    ModelConfig,
    V3Options,
    configure_logging,
    resolve_credentials,
    resolve_model_api_key,
)
from .errors import (
    AlreadyEndedError,
    MissingCredentialError,
    NotStartedError,
    UnexpectedEndOfStreamError,
    normalize_error,
)
from .multiplexer import OperationStream
from .protocol.events import ErrorEvent, LogEvent, ProgressEvent, StartedEvent
from .protocol.operations import Operation
from .session import SessionState, SessionStateMachine
from .transport import BaseTransport, Destination, TransportKind, create_transport

logger = logging.getLogger(__name__)

CDP_BASE_URL = "wss://connect.browserbase.com"

ModelParam = str | ModelConfig | dict[str, Any] | None


def _model_param(model: ModelParam) -> str | dict[str, Any] | None:
    if isinstance(model, ModelConfig):
        return model.model_dump(exclude_none=True)
    return model


def _schema_param(schema: Any) -> Any:
    """Extraction schema as a JSON-compatible value. Never interpreted."""
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_json_schema()
    if isinstance(schema, str):
        try:
            return json.loads(schema)
        except json.JSONDecodeError as e:
            raise normalize_error(e) from e
    return schema


class Stagehand:
    """A session against a remote Stagehand service.

    Data operations (`act`, `extract`, `observe`, `execute`) return an
    OperationStream without doing any I/O; precondition failures raise
    immediately. Network and decode failures arrive as the stream's
    terminal ErrorEvent.
    """

    def __init__(
        self,
        destination: Destination | None = None,
        *,
        transport: BaseTransport | None = None,
        config: ClientConfig | None = None,
        api_key: str | None = None,
        project_id: str | None = None,
        env: Mapping[str, str] | None = None,
    ):
        self.config = config or ClientConfig()
        if destination is None:
            destination = transport.destination if transport else Destination.rpc(self.config.rpc_url)
        self.destination = destination
        self._env = os.environ if env is None else env
        self.credentials = resolve_credentials(self._env, api_key, project_id)
        self._transport = transport
        self._machine = SessionStateMachine()
        self._streams: set[OperationStream] = set()

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def session_id(self) -> str | None:
        """Remote session identity; None until `start` succeeds."""
        return self._machine.session_id

    @property
    def transport(self) -> BaseTransport | None:
        return self._transport

    @property
    def active_streams(self) -> list[OperationStream]:
        """Streams that have sent their request and not yet been released."""
        return list(self._streams)

    def browserbase_cdp_url(self) -> str:
        """Remote-control (CDP) websocket URL for the started session."""
        if not self.session_id:
            raise NotStartedError()
        if not self.credentials.api_key:
            raise MissingCredentialError(API_KEY_ENV)
        query = urlencode({"apiKey": self.credentials.api_key, "sessionId": self.session_id})
        return f"{CDP_BASE_URL}?{query}"

    # Lifecycle

    async def connect(self) -> Stagehand:
        """Connect the transport. Idempotent while connected.

        Raises:
            MissingCredentialError: Event-stream destination without credentials
            TransportError: RPC endpoint unreachable
            AlreadyEndedError: The session has ended
        """
        state = self._machine.state
        if state == SessionState.ENDED:
            raise AlreadyEndedError()
        if state != SessionState.DISCONNECTED:
            return self

        if self._transport is None:
            self._transport = create_transport(self.destination, self.credentials, self.config.connect_timeout)
        await self._transport.connect()
        self._machine.connected(self.destination)
        return self

    async def start(self, options: V3Options | dict[str, Any] | None = None) -> str:
        """Start the remote browser session and return its id.

        Log events emitted while starting are forwarded to the logger.
        """
        if options is None:
            options = V3Options()
        elif isinstance(options, dict):
            options = V3Options.model_validate(options)

        self._machine.require_can_start()
        options = self._with_credentials(options)
        configure_logging(options.verbose)

        self._machine.begin_start(options.to_params(), resolve_model_api_key(options.model, self._env))
        operation = self._machine.prepare(Operation.start(options.to_params(), self.config.start_timeout_ms))

        try:
            async with self._open(operation) as stream:
                async for event in stream:
                    if isinstance(event, LogEvent):
                        logger.info(f"[{event.category}] {event.message}")
                    elif isinstance(event, ProgressEvent):
                        logger.debug(f"start: {event.message}")
        except BaseException:
            self._machine.abort_start()
            raise

        terminal = stream.terminal_event
        if isinstance(terminal, StartedEvent):
            self._machine.complete_start(terminal.session_id)
            return terminal.session_id

        self._machine.abort_start()
        if isinstance(terminal, ErrorEvent):
            raise terminal.error
        raise UnexpectedEndOfStreamError("start finished without a session id")

    def _with_credentials(self, options: V3Options) -> V3Options:
        """Fill service credentials for the cloud environment over RPC."""
        if options.env != Env.BROWSERBASE or self.destination.kind != TransportKind.RPC:
            return options
        api_key = options.api_key or self.credentials.api_key
        project_id = options.project_id or self.credentials.project_id
        if not api_key:
            raise MissingCredentialError(API_KEY_ENV)
        if not project_id:
            raise MissingCredentialError(PROJECT_ID_ENV)
        return options.model_copy(update={"api_key": api_key, "project_id": project_id})

    async def end(self, force: bool = False) -> None:
        """End the session and close the transport.

        From CONNECTED this is a local no-op. Otherwise:
        - force=False asks the service to clean up and waits for its
          acknowledgement, bounded by `config.end_timeout_ms`
        - force=True cancels in-flight operations first, sends a forced
          close with a short bound, and never raises on network failure
        """
        state = self._machine.state
        if state == SessionState.ENDED:
            raise AlreadyEndedError()
        if state == SessionState.DISCONNECTED:
            raise NotStartedError("Session is not connected")

        if state == SessionState.CONNECTED:
            self._machine.end()
            await self._teardown()
            return

        timeout_ms = self.config.force_end_timeout_ms if force else self.config.end_timeout_ms
        operation = self._machine.prepare(Operation.end(force=force, timeout_ms=timeout_ms))
        self._machine.end()

        try:
            if force:
                for stream in list(self._streams):
                    stream.cancel()
                try:
                    await self._open(operation).result()
                except Exception as e:
                    logger.warning(f"Forced end of {operation.session_id} failed: {normalize_error(e)}")
            else:
                await self._open(operation).result()
        finally:
            await self._teardown()
        logger.info(f"Session ended: {operation.session_id}")

    async def _teardown(self) -> None:
        for stream in list(self._streams):
            await stream.aclose()
        if self._transport is not None:
            await self._transport.close()

    # Data operations

    def _open(self, operation: Operation) -> OperationStream:
        assert self._transport is not None
        return OperationStream(
            self._transport,
            operation,
            cancel_grace=self.config.cancel_grace,
            on_open=self._streams.add,
            on_close=self._streams.discard,
        )

    def act(
        self,
        instruction: str,
        model: ModelParam = None,
        variables: dict[str, str] | None = None,
        timeout_ms: int | None = None,
        frame_id: str | None = None,
    ) -> OperationStream:
        """Perform an action described in natural language.

        Events: LogEvent*, then SuccessEvent or ErrorEvent.
        """
        self._machine.require_started()
        operation = Operation.act(instruction, _model_param(model), variables, timeout_ms, frame_id)
        return self._open(self._machine.prepare(operation))

    def extract(
        self,
        instruction: str,
        schema: Any,
        model: ModelParam = None,
        timeout_ms: int | None = None,
        selector: str | None = None,
        frame_id: str | None = None,
    ) -> OperationStream:
        """Extract structured data. `schema` may be a JSON-compatible value,
        a JSON string, or a pydantic model class.

        Events: LogEvent*, then DataJsonEvent or ErrorEvent.

        Raises:
            MalformedPayloadError: `schema` is a string that is not valid JSON
        """
        self._machine.require_started()
        operation = Operation.extract(
            instruction, _schema_param(schema), _model_param(model), timeout_ms, selector, frame_id
        )
        return self._open(self._machine.prepare(operation))

    def observe(
        self,
        instruction: str | None = None,
        model: ModelParam = None,
        timeout_ms: int | None = None,
        selector: str | None = None,
        only_selectors: list[str] | None = None,
        frame_id: str | None = None,
    ) -> OperationStream:
        """Find candidate elements for an instruction.

        Events: LogEvent*, then ElementsJsonEvent or ErrorEvent.
        """
        self._machine.require_started()
        operation = Operation.observe(
            instruction, _model_param(model), timeout_ms, selector, only_selectors, frame_id
        )
        return self._open(self._machine.prepare(operation))

    def execute(
        self,
        agent_config: AgentConfig | dict[str, Any],
        execute_options: AgentExecuteOptions | dict[str, Any],
        frame_id: str | None = None,
        timeout_ms: int | None = None,
    ) -> OperationStream:
        """Run an autonomous agent task.

        Events: LogEvent*, then ResultJsonEvent or ErrorEvent.
        """
        self._machine.require_started()
        if isinstance(agent_config, AgentConfig):
            agent_config = agent_config.to_wire()
        if isinstance(execute_options, AgentExecuteOptions):
            execute_options = execute_options.to_wire()
        operation = Operation.execute(agent_config, execute_options, frame_id, timeout_ms)
        return self._open(self._machine.prepare(operation))

    async def __aenter__(self) -> Stagehand:
        return await self.connect()

    async def __aexit__(self, *args: Any) -> None:
        if self._machine.state in (SessionState.CONNECTED, SessionState.STARTED):
            await self.end(force=True)


async def connect(
    destination: Destination | None = None,
    *,
    transport: BaseTransport | None = None,
    config: ClientConfig | None = None,
    api_key: str | None = None,
    project_id: str | None = None,
    env: Mapping[str, str] | None = None,
) -> Stagehand:
    """Create a Stagehand client and connect it."""
    client = Stagehand(
        destination,
        transport=transport,
        config=config,
        api_key=api_key,
        project_id=project_id,
        env=env,
    )
    return await client.connect()

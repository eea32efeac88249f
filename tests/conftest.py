"""Pytest configuration and shared fixtures."""

import pytest
import pytest_asyncio

from stagehand_sdk import ClientConfig, MockTransport, Stagehand


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def mock_transport() -> MockTransport:
    return MockTransport()


@pytest.fixture
def client_config() -> ClientConfig:
    """Short bounds so hanging paths fail fast."""
    return ClientConfig(end_timeout_ms=1000, force_end_timeout_ms=500, cancel_grace=0.5)


@pytest_asyncio.fixture
async def started(mock_transport: MockTransport, client_config: ClientConfig) -> Stagehand:
    """A client started against the mock transport (session id "mock_session")."""
    stagehand = Stagehand(transport=mock_transport, config=client_config, env={})
    await stagehand.connect()
    await stagehand.start({"model": "openai/gpt-4o"})
    return stagehand

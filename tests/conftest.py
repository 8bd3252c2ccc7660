"""Shared fixtures for the MCP client tests."""
import sys
from pathlib import Path

import pytest
import pytest_asyncio

from clients import ClientRegistry
from config import Settings

ECHO_SERVER = str(Path(__file__).parent / "servers" / "echo_server.py")


@pytest.fixture
def echo_args():
    """Build arguments that launch the echo server with misbehaviour flags."""
    def build(*flags: str) -> list:
        return [ECHO_SERVER, *flags]
    return build


@pytest.fixture
def python() -> str:
    return sys.executable


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        client_name="test-host",
        client_version="9.9.9",
        request_timeout=5.0,
        handshake_timeout=5.0,
        shutdown_timeout=1.0,
        terminate_grace_period=1.0,
        mcp_servers={},
    )


@pytest.fixture
def server_log(tmp_path, monkeypatch) -> Path:
    """File the echo server appends every received message to."""
    path = tmp_path / "received.jsonl"
    monkeypatch.setenv("ECHO_SERVER_LOG", str(path))
    return path


@pytest_asyncio.fixture
async def registry(settings):
    registry = ClientRegistry(settings=settings)
    yield registry
    await registry.close()

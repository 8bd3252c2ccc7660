"""stdio MCP clients and the registry that owns them."""
from .errors import (
    AlreadyConnected,
    ConnectionClosed,
    EmptyResponse,
    HandshakeError,
    LockError,
    MCPClientError,
    NotConnected,
    NotInitialized,
    ParseError,
    ProtocolError,
    RegistryClosed,
    RequestTimeout,
    SpawnError,
    UnsupportedMethod,
)
from .mcp_client import ClientState, MCPClient
from .registry import ClientRegistry

__all__ = [
    "ClientRegistry",
    "ClientState",
    "MCPClient",
    "MCPClientError",
    "AlreadyConnected",
    "ConnectionClosed",
    "EmptyResponse",
    "HandshakeError",
    "LockError",
    "NotConnected",
    "NotInitialized",
    "ParseError",
    "ProtocolError",
    "RegistryClosed",
    "RequestTimeout",
    "SpawnError",
    "UnsupportedMethod",
]

"""Error types raised by the stdio MCP client and registry."""
from typing import Any, Dict, Optional


class MCPClientError(Exception):
    """Base class for every client/registry failure."""

    kind = "mcp_error"

    def __init__(self, message: str, data: Optional[Any] = None):
        self.message = message
        self.data = data
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a plain dict for the host bridge."""
        error = {
            "kind": self.kind,
            "message": self.message
        }
        if self.data is not None:
            error["data"] = self.data
        return error


class SpawnError(MCPClientError):
    """Executable not found or failed to start."""
    kind = "spawn_error"


class HandshakeError(MCPClientError):
    """The initialize exchange failed; the subprocess has been killed."""

    kind = "handshake_error"

    def __init__(self, message: str, cause: Optional[MCPClientError] = None, data: Optional[Any] = None):
        self.cause = cause
        if data is None and cause is not None:
            data = cause.to_dict()
        super().__init__(message, data)


class AlreadyConnected(MCPClientError):
    kind = "already_connected"


class NotConnected(MCPClientError):
    kind = "not_connected"


class NotInitialized(MCPClientError):
    """Operation attempted outside the READY state."""
    kind = "not_initialized"


class ConnectionClosed(MCPClientError):
    """The subprocess closed its pipes."""
    kind = "connection_closed"


class EmptyResponse(MCPClientError):
    kind = "empty_response"


class ParseError(MCPClientError):
    """Response line was not a JSON object."""

    kind = "parse_error"

    def __init__(self, message: str, raw_line: str, line_bytes: Optional[int] = None):
        self.raw_line = raw_line
        self.line_bytes = line_bytes
        data = {"raw_line": raw_line}
        if line_bytes is not None:
            # raw_line holds only a prefix
            data["line_bytes"] = line_bytes
        super().__init__(message, data)


class ProtocolError(MCPClientError):
    """Response carried a JSON-RPC ``error`` member."""

    kind = "protocol_error"

    def __init__(self, error: Any):
        self.error = error
        if isinstance(error, dict):
            self.code = error.get("code")
            detail = error.get("message", "Unknown error")
        else:
            self.code = None
            detail = str(error)
        message = f"MCP error [{self.code}]: {detail}" if self.code is not None else f"MCP error: {detail}"
        super().__init__(message, error)


class LockError(MCPClientError):
    """A client's exchange lock could not be acquired in time."""
    kind = "lock_error"


class RequestTimeout(MCPClientError):
    """No response line arrived within the configured timeout."""
    kind = "request_timeout"


class UnsupportedMethod(MCPClientError):
    kind = "unsupported_method"


class RegistryClosed(MCPClientError):
    """The registry is shutting down and accepts no new servers."""
    kind = "registry_closed"

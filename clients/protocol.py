"""Line-delimited JSON-RPC 2.0 codec for stdio MCP servers."""
from typing import Any, Dict, Optional, Union
import json

from .errors import ConnectionClosed, EmptyResponse, ParseError, ProtocolError


class RequestIdAllocator:
    """Per-client request id counter. Starts at 1, never reused."""

    def __init__(self, start: int = 1):
        self._next = start

    def next_id(self) -> int:
        request_id = self._next
        self._next += 1
        return request_id

    @property
    def peek(self) -> int:
        """Id the next request will receive."""
        return self._next


class JSONRPCNotification:
    """JSON-RPC 2.0 notification (no id, never answered)."""

    def __init__(
        self,
        method: str,
        params: Optional[Union[Dict[str, Any], list]] = None
    ):
        self.jsonrpc = "2.0"
        self.method = method
        self.params = params

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "jsonrpc": self.jsonrpc,
            "method": self.method
        }
        if self.params is not None:
            result["params"] = self.params
        return result

    def to_json(self) -> str:
        """Convert to a single-line JSON string."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    def to_line(self) -> bytes:
        """Encode as one newline-terminated UTF-8 frame."""
        return (self.to_json() + "\n").encode("utf-8")


class JSONRPCRequest(JSONRPCNotification):
    """JSON-RPC 2.0 request."""

    def __init__(
        self,
        method: str,
        request_id: int,
        params: Optional[Union[Dict[str, Any], list]] = None
    ):
        super().__init__(method, params)
        self.id = request_id

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
            "method": self.method
        }
        if self.params is not None:
            result["params"] = self.params
        return result


class JSONRPCResponse:
    """JSON-RPC 2.0 response as read back from a server."""

    def __init__(
        self,
        result: Optional[Any] = None,
        request_id: Optional[Union[str, int]] = None,
        raw: Optional[Dict[str, Any]] = None
    ):
        self.jsonrpc = "2.0"
        self.result = result
        self.id = request_id
        self.raw = raw if raw is not None else self.to_dict()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JSONRPCResponse":
        """Create response from a decoded message, raising on an ``error`` member."""
        if data.get("error") is not None:
            raise ProtocolError(data["error"])
        return cls(result=data.get("result"), request_id=data.get("id"), raw=data)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "jsonrpc": self.jsonrpc,
            "result": self.result
        }
        if self.id is not None:
            result["id"] = self.id
        return result


def parse_message(line: str) -> Dict[str, Any]:
    """
    Decode one line read from a server.

    Applies, in order: EOF, blank line, JSON syntax, object shape.

    Args:
        line: Line as returned by readline (empty string means EOF)

    Returns:
        The decoded JSON object

    Raises:
        ConnectionClosed: Zero bytes were read
        EmptyResponse: The line is blank
        ParseError: The line is not a JSON object
    """
    if line == "":
        raise ConnectionClosed("MCP server closed connection")

    stripped = line.strip()
    if not stripped:
        raise EmptyResponse("Empty response from MCP server")

    try:
        data = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise ParseError(f"Failed to parse JSON response: {e}", raw_line=line)

    if not isinstance(data, dict):
        raise ParseError("JSON-RPC message is not an object", raw_line=line)
    return data


def is_server_initiated(data: Dict[str, Any]) -> bool:
    """True for a notification or request sent by the server rather than a reply."""
    return "method" in data


def decode_response(line: str) -> JSONRPCResponse:
    """Decode one line as a response, applying the full outcome ladder."""
    return JSONRPCResponse.from_dict(parse_message(line))

"""MCP client for a single server subprocess speaking JSON-RPC over stdio."""
import asyncio
import contextlib
import logging
import os
from collections import deque
from enum import Enum
from typing import Any, Dict, List, Optional

import config as app_config
from .errors import (
    ConnectionClosed,
    HandshakeError,
    LockError,
    MCPClientError,
    NotInitialized,
    ParseError,
    RequestTimeout,
    SpawnError,
)
from .protocol import (
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestIdAllocator,
    is_server_initiated,
    parse_message,
)

logger = logging.getLogger(__name__)

# Bytes of an oversized line kept in the ParseError
RAW_PREFIX_BYTES = 256


class ClientState(Enum):
    """Lifecycle of an MCPClient. Transitions only move forward."""
    CREATED = "created"
    INITIALIZING = "initializing"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class MCPClient:
    """
    MCP client owning one server subprocess.

    Requests are strictly half-duplex: one line is written, then lines are read
    until the matching reply arrives. Server-initiated messages and replies to
    abandoned requests are skipped; anything that is not a JSON object fails
    the in-flight request.
    """

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        settings: Optional[app_config.Settings] = None
    ):
        """
        Initialize MCP client. Nothing is spawned until start().

        Args:
            command: Executable to launch
            args: Command line arguments
            env: Variables merged over the inherited environment (None inherits unchanged)
            settings: Settings override, defaults to the application settings
        """
        self.command = command
        self.args = list(args or [])
        self.env = env
        self.settings = settings or app_config.settings
        self.state = ClientState.CREATED
        self.process: Optional[asyncio.subprocess.Process] = None
        self.server_info: Optional[Dict[str, Any]] = None
        self._ids = RequestIdAllocator()
        self._lock = asyncio.Lock()
        self._stderr_tail: deque = deque(maxlen=self.settings.stderr_tail_lines)
        self._stderr_task: Optional[asyncio.Task] = None

    @classmethod
    async def spawn(
        cls,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        settings: Optional[app_config.Settings] = None
    ) -> "MCPClient":
        """Create a client and run the full startup handshake."""
        client = cls(command, args, env=env, settings=settings)
        await client.start()
        return client

    @property
    def initialized(self) -> bool:
        return self.state is ClientState.READY

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def stderr_tail(self) -> List[str]:
        """Most recent stderr lines of the subprocess."""
        return list(self._stderr_tail)

    def __repr__(self) -> str:
        return f"<MCPClient {self.command!r} pid={self.pid} state={self.state.value}>"

    # ---------------------- lifecycle ----------------------

    async def start(self) -> None:
        """
        Spawn the server and perform the initialize handshake.

        Raises:
            SpawnError: The executable could not be started
            HandshakeError: The handshake failed; the subprocess has been killed
        """
        if self.state is not ClientState.CREATED:
            raise RuntimeError(f"Client already started ({self.state.value})")

        logger.info(f"[MCP] Starting server: {self.command} {self.args}")
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(),
                limit=self.settings.max_line_bytes,
            )
        except (OSError, ValueError) as e:
            # ValueError: NUL byte in command/args, illegal env variable name
            self.state = ClientState.TERMINATED
            logger.error(f"[MCP] Failed to start {self.command}: {e}")
            raise SpawnError(f"Failed to start {self.command!r}: {e}", data={"command": self.command}) from e

        self.state = ClientState.INITIALIZING
        self._stderr_task = asyncio.create_task(self._drain_stderr())

        try:
            await self._initialize()
        except MCPClientError as e:
            await self._kill_process()
            logger.error(f"[MCP] Handshake with {self.command} failed: {e}")
            raise HandshakeError(
                f"MCP handshake with {self.command} failed: {e.message}",
                cause=e,
                data={"cause": e.to_dict(), "stderr": self.stderr_tail},
            ) from e
        except asyncio.CancelledError:
            await self._kill_process()
            raise

    async def _initialize(self) -> None:
        request = JSONRPCRequest(
            "initialize",
            self._ids.next_id(),
            params={
                "protocolVersion": self.settings.protocol_version,
                "capabilities": {
                    "tools": {}
                },
                "clientInfo": {
                    "name": self.settings.client_name,
                    "version": self.settings.client_version
                }
            }
        )

        logger.info("[MCP] Initializing connection...")
        async with self._lock:
            response = await self._exchange(request, self.settings.handshake_timeout)
            self.server_info = response.result if isinstance(response.result, dict) else None
            await self._write(JSONRPCNotification("notifications/initialized"))
        self.state = ClientState.READY
        logger.info(f"[MCP] Connection initialized successfully (pid {self.pid})")

    async def shutdown(self) -> None:
        """
        Shut the server down. Safe to call more than once.

        A graceful ``shutdown`` request is attempted only when READY and its
        failures are logged, never raised. The subprocess is always terminated
        before this returns.
        """
        if self.state in (ClientState.SHUTTING_DOWN, ClientState.TERMINATED):
            return

        was_ready = self.state is ClientState.READY
        self.state = ClientState.SHUTTING_DOWN
        if was_ready:
            await self._request_shutdown()
        await self._terminate_process()
        logger.info(f"[MCP] Server {self.command} terminated")

    async def _request_shutdown(self) -> None:
        timeout = self.settings.shutdown_timeout
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[MCP] Exchange still in flight on {self.command}, skipping shutdown request")
            return

        try:
            await self._exchange(JSONRPCRequest("shutdown", self._ids.next_id()), timeout)
        except MCPClientError as e:
            logger.warning(f"[MCP] Shutdown request to {self.command} failed (ignored): {e}")
        finally:
            self._lock.release()

    async def _terminate_process(self) -> None:
        """SIGTERM, wait for the grace period, then SIGKILL."""
        process = self.process
        if process is not None and process.returncode is None:
            self._close_stdin()
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), self.settings.terminate_grace_period)
            except asyncio.TimeoutError:
                logger.warning(f"[MCP] {self.command} ignored SIGTERM, killing pid {process.pid}")
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        await self._release()

    async def _kill_process(self) -> None:
        process = self.process
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
        await self._release()

    async def _release(self) -> None:
        self._close_stdin()
        if self._stderr_task is not None and not self._stderr_task.done():
            # Give the drain task a moment to collect the last stderr lines
            try:
                await asyncio.wait_for(self._stderr_task, 0.5)
            except asyncio.TimeoutError:
                pass
        self.state = ClientState.TERMINATED

    def _close_stdin(self) -> None:
        if self.process is not None and self.process.stdin is not None:
            if not self.process.stdin.is_closing():
                self.process.stdin.close()

    # ---------------------- operations ----------------------

    async def list_tools(self) -> Any:
        """Call ``tools/list``."""
        return await self._request("tools/list")

    async def call_tool(self, name: str, arguments: Any = None) -> Any:
        """
        Call ``tools/call``.

        Args:
            name: Tool name as advertised by tools/list
            arguments: Tool arguments (JSON value)

        Returns:
            The ``result`` member of the response
        """
        logger.info(f"[MCP] Calling tool: {name} with args: {arguments}")
        return await self._request(
            "tools/call",
            {"name": name, "arguments": arguments if arguments is not None else {}}
        )

    async def list_resources(self) -> Any:
        """Call ``resources/list``."""
        return await self._request("resources/list")

    async def read_resource(self, uri: str) -> Any:
        """Call ``resources/read``."""
        return await self._request("resources/read", {"uri": uri})

    # ---------------------- internals ----------------------

    def _ensure_ready(self) -> None:
        if self.state is not ClientState.READY:
            raise NotInitialized(f"Client not initialized ({self.state.value})")

    async def _request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self._ensure_ready()
        timeout = self.settings.request_timeout
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout)
        except asyncio.TimeoutError:
            raise LockError(f"Another request to {self.command} is still in flight after {timeout}s")

        try:
            # State may have moved on while waiting for the lock
            self._ensure_ready()
            request = JSONRPCRequest(method, self._ids.next_id(), params)
            response = await self._exchange(request, timeout)
        finally:
            self._lock.release()
        return response.result

    async def _exchange(self, request: JSONRPCRequest, timeout: Optional[float]) -> JSONRPCResponse:
        """Write one request and wait for its reply. Caller holds the lock."""
        try:
            return await asyncio.wait_for(self._roundtrip(request), timeout)
        except asyncio.TimeoutError:
            raise RequestTimeout(
                f"No response to {request.method} within {timeout}s",
                data={"id": request.id, "method": request.method}
            )

    async def _roundtrip(self, request: JSONRPCRequest) -> JSONRPCResponse:
        await self._write(request)
        while True:
            data = parse_message(await self._read_line())
            logger.debug(f"[MCP] Parsed response: {data}")

            if is_server_initiated(data):
                logger.info(f"[MCP] Skipping server message: {data.get('method')}")
                continue
            # Ids are compared as text so a server echoing "2" for 2 still matches
            if data.get("id") is not None and str(data.get("id")) != str(request.id):
                logger.warning(f"[MCP] Discarding reply to id {data.get('id')} while waiting for {request.id}")
                continue
            return JSONRPCResponse.from_dict(data)

    async def _write(self, message: JSONRPCNotification) -> None:
        stdin = self.process.stdin
        line = message.to_line()
        logger.debug(f"[MCP] Sending: {line!r}")
        try:
            stdin.write(line)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ConnectionClosed(f"MCP server closed connection: {e}")

    async def _read_line(self) -> str:
        stdout = self.process.stdout
        try:
            raw = await stdout.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            # EOF, possibly after an unterminated line
            raw = e.partial
        except asyncio.LimitOverrunError as e:
            await self._discard_long_line(e.consumed)
        logger.debug(f"[MCP] Raw response ({len(raw)} bytes): {raw!r}")
        return raw.decode("utf-8", errors="replace")

    async def _discard_long_line(self, consumed: int) -> None:
        """Drop a line longer than max_line_bytes, keeping a prefix for the error."""
        stdout = self.process.stdout
        chunk = await stdout.readexactly(consumed)
        prefix = chunk[:RAW_PREFIX_BYTES]
        size = len(chunk)
        while True:
            try:
                size += len(await stdout.readuntil(b"\n"))
                break
            except asyncio.LimitOverrunError as e:
                size += len(await stdout.readexactly(e.consumed))
            except asyncio.IncompleteReadError as e:
                size += len(e.partial)
                break
        raise ParseError(
            f"Response line of {size} bytes exceeds limit of {self.settings.max_line_bytes}",
            raw_line=prefix.decode("utf-8", errors="replace"),
            line_bytes=size,
        )

    async def _drain_stderr(self) -> None:
        stderr = self.process.stderr
        while True:
            try:
                raw = await stderr.readline()
            except ValueError:
                logger.debug(f"[MCP] Dropped oversized stderr line from {self.command}")
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip()
            self._stderr_tail.append(line)
            logger.debug(f"[MCP] [{self.command} stderr] {line}")

    def _build_env(self) -> Optional[Dict[str, str]]:
        if self.env is None:
            return None
        return {**os.environ, **self.env}

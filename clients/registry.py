"""Registry of named stdio MCP clients - the entry point for the host bridge."""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

import config as app_config
from .errors import AlreadyConnected, MCPClientError, NotConnected, RegistryClosed, UnsupportedMethod
from .mcp_client import MCPClient

logger = logging.getLogger(__name__)


class ClientRegistry:
    """
    Maps server names to live MCP clients.

    The registry lock guards only the map itself (and the names whose connect
    is still in flight); it is never held across subprocess I/O. Each client
    serialises its own exchanges, so a hung server blocks callers of that
    server only.
    """

    def __init__(self, settings: Optional[app_config.Settings] = None):
        """
        Initialize an empty registry.

        Args:
            settings: Settings passed to every spawned client
        """
        self.settings = settings or app_config.settings
        self._clients: Dict[str, MCPClient] = {}
        self._connecting: Set[str] = set()
        self._closing = False
        self._lock = asyncio.Lock()

    async def connect(
        self,
        name: str,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Spawn a server, run the handshake and register it under name.

        Args:
            name: Server name, unique within the registry
            command: Executable to launch
            args: Command line arguments
            env: Extra environment variables for the subprocess

        Returns:
            Acknowledgement message

        Raises:
            AlreadyConnected: name is connected or being connected
            SpawnError: The executable could not be started
            HandshakeError: The server did not complete the handshake
            RegistryClosed: close() was called before the server was registered
        """
        async with self._lock:
            if self._closing:
                raise RegistryClosed(f"Registry is closed, not connecting {name}", data={"server": name})
            if name in self._clients or name in self._connecting:
                raise AlreadyConnected(f"Server {name} is already connected", data={"server": name})
            self._connecting.add(name)

        try:
            client = await MCPClient.spawn(command, args, env=env, settings=self.settings)
        except BaseException:
            self._connecting.discard(name)
            raise

        async with self._lock:
            self._connecting.discard(name)
            closing = self._closing
            if not closing:
                self._clients[name] = client

        if closing:
            # close() ran while the handshake was in flight
            await client.shutdown()
            raise RegistryClosed(f"Registry closed while connecting {name}", data={"server": name})

        logger.info(f"[REGISTRY] Connected MCP server {name} (pid {client.pid})")
        return f"Connected to MCP server: {name}"

    async def connect_with_env(
        self,
        name: str,
        command: str,
        args: List[str],
        env: Dict[str, str]
    ) -> str:
        """Connect with an explicit environment map."""
        logger.debug(f"[REGISTRY] Connecting {name} with env keys: {sorted(env)}")
        return await self.connect(name, command, args, env=env)

    async def disconnect(self, name: str) -> str:
        """
        Remove a server and terminate its subprocess.

        Returns only after the subprocess has exited.
        """
        async with self._lock:
            client = self._clients.pop(name, None)

        if client is None:
            raise NotConnected(f"Server {name} is not connected", data={"server": name})

        await client.shutdown()
        logger.info(f"[REGISTRY] Disconnected MCP server {name}")
        return f"Disconnected from MCP server: {name}"

    async def list_connected(self) -> List[str]:
        """Snapshot of connected server names, unordered."""
        async with self._lock:
            return list(self._clients.keys())

    async def get_client(self, name: str) -> MCPClient:
        """
        Look up a connected client.

        Raises:
            NotConnected: No server registered under name
        """
        async with self._lock:
            client = self._clients.get(name)
        if client is None:
            raise NotConnected(f"Server {name} is not connected", data={"server": name})
        return client

    async def list_tools(self, name: str) -> Any:
        client = await self.get_client(name)
        return await client.list_tools()

    async def call_tool(self, name: str, tool_name: str, arguments: Any = None) -> Any:
        client = await self.get_client(name)
        return await client.call_tool(tool_name, arguments)

    async def list_resources(self, name: str) -> Any:
        client = await self.get_client(name)
        return await client.list_resources()

    async def read_resource(self, name: str, uri: str) -> Any:
        client = await self.get_client(name)
        return await client.read_resource(uri)

    async def send_message(self, name: str, message: Dict[str, Any]) -> Any:
        """
        Dispatch a JSON-RPC style message to the matching operation.

        Args:
            name: Server name
            message: Dict with ``method`` and optional ``params``

        Raises:
            UnsupportedMethod: method is not one of the four MCP operations
        """
        method = message.get("method")
        params = message.get("params") or {}

        if method == "tools/list":
            return await self.list_tools(name)
        elif method == "tools/call":
            return await self.call_tool(name, params.get("name"), params.get("arguments"))
        elif method == "resources/list":
            return await self.list_resources(name)
        elif method == "resources/read":
            return await self.read_resource(name, params.get("uri"))
        raise UnsupportedMethod(f"Unsupported message method: {method}", data={"method": method})

    # Legacy names used by older front-ends
    async def start_server(self, name: str, command: str, args: Optional[List[str]] = None) -> str:
        return await self.connect(name, command, args)

    async def stop_server(self, name: str) -> str:
        return await self.disconnect(name)

    async def list_servers(self) -> List[str]:
        return await self.list_connected()

    async def connect_configured(self, configs: Dict[str, app_config.ServerConfig]) -> Dict[str, str]:
        """
        Connect every autoconnect server of a configuration map.

        Failures are logged and reported per name, never raised.

        Returns:
            Server name to acknowledgement or error message
        """
        results: Dict[str, str] = {}
        for name, server in configs.items():
            if not server.autoconnect:
                continue
            try:
                results[name] = await self.connect(name, server.command, server.args, env=server.env)
            except MCPClientError as e:
                logger.error(f"[REGISTRY] Failed to connect configured server {name}: {e}")
                results[name] = str(e)
        return results

    async def close(self) -> None:
        """
        Disconnect every server and refuse new ones. Used on host teardown.

        Connects still in flight shut their own client down when they finish.
        """
        async with self._lock:
            self._closing = True
            names = list(self._clients.keys())
        if not names:
            return
        logger.info(f"[REGISTRY] Shutting down {len(names)} MCP server(s)")
        results = await asyncio.gather(
            *(self.disconnect(name) for name in names),
            return_exceptions=True
        )
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error(f"[REGISTRY] Error shutting down {name}: {result}", exc_info=result)

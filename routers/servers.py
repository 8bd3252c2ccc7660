"""Host bridge routes - expose the MCP client registry over HTTP."""
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
import logging
from clients import ClientRegistry
from clients.errors import (
    AlreadyConnected,
    LockError,
    MCPClientError,
    NotConnected,
    NotInitialized,
    RegistryClosed,
    RequestTimeout,
    UnsupportedMethod,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Anything not listed is a failure talking to the server itself
ERROR_STATUS = {
    NotConnected: 404,
    AlreadyConnected: 409,
    NotInitialized: 409,
    UnsupportedMethod: 400,
    RequestTimeout: 504,
    LockError: 504,
    RegistryClosed: 503,
}


class ConnectRequest(BaseModel):
    """Request model for connecting a server."""
    name: str
    command: str
    args: List[str] = []
    env: Optional[Dict[str, str]] = None


class CallToolRequest(BaseModel):
    tool: str
    arguments: Any = None


class ReadResourceRequest(BaseModel):
    uri: str


class MessageRequest(BaseModel):
    """Generic JSON-RPC style message."""
    method: str
    params: Optional[Dict[str, Any]] = None


def get_registry(request: Request) -> ClientRegistry:
    return request.app.state.registry


def to_http_error(error: MCPClientError) -> HTTPException:
    """Map a client error to an HTTPException carrying its kind."""
    status_code = ERROR_STATUS.get(type(error), 502)
    if status_code >= 500:
        logger.error(f"[BRIDGE] {error.kind}: {error}")
    else:
        logger.warning(f"[BRIDGE] {error.kind}: {error}")
    return HTTPException(status_code=status_code, detail=error.to_dict())


@router.post("/servers")
async def connect_server(body: ConnectRequest, registry: ClientRegistry = Depends(get_registry)):
    """Spawn and connect an MCP server."""
    try:
        message = await registry.connect(body.name, body.command, body.args, env=body.env)
    except MCPClientError as e:
        raise to_http_error(e)
    return {"message": message}


@router.get("/servers")
async def list_servers(registry: ClientRegistry = Depends(get_registry)):
    """List connected server names."""
    return {"servers": await registry.list_connected()}


@router.delete("/servers/{name}")
async def disconnect_server(name: str, registry: ClientRegistry = Depends(get_registry)):
    """Disconnect a server and terminate its process."""
    try:
        message = await registry.disconnect(name)
    except MCPClientError as e:
        raise to_http_error(e)
    return {"message": message}


@router.get("/servers/{name}/tools")
async def list_tools(name: str, registry: ClientRegistry = Depends(get_registry)):
    try:
        return await registry.list_tools(name)
    except MCPClientError as e:
        raise to_http_error(e)


@router.post("/servers/{name}/tools/call")
async def call_tool(name: str, body: CallToolRequest, registry: ClientRegistry = Depends(get_registry)):
    try:
        return await registry.call_tool(name, body.tool, body.arguments)
    except MCPClientError as e:
        raise to_http_error(e)


@router.get("/servers/{name}/resources")
async def list_resources(name: str, registry: ClientRegistry = Depends(get_registry)):
    try:
        return await registry.list_resources(name)
    except MCPClientError as e:
        raise to_http_error(e)


@router.post("/servers/{name}/resources/read")
async def read_resource(name: str, body: ReadResourceRequest, registry: ClientRegistry = Depends(get_registry)):
    try:
        return await registry.read_resource(name, body.uri)
    except MCPClientError as e:
        raise to_http_error(e)


@router.post("/servers/{name}/messages")
async def send_message(name: str, body: MessageRequest, registry: ClientRegistry = Depends(get_registry)):
    """
    Dispatch a message by method name.

    Supports tools/list, tools/call, resources/list and resources/read.
    """
    try:
        return await registry.send_message(name, body.model_dump())
    except MCPClientError as e:
        raise to_http_error(e)

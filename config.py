"""Application configuration."""
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Optional


class ServerConfig(BaseModel):
    """Launch definition for a stdio MCP server."""
    command: str
    args: List[str] = []
    env: Optional[Dict[str, str]] = None
    description: str = ""
    # Connect when the bridge starts
    autoconnect: bool = True


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # ============================================
    # MCP Client Identity
    # ============================================
    # Sent as clientInfo in the initialize request
    client_name: str = "mcp-stdio-bridge"
    client_version: str = "0.1.0"

    # Fixed, never negotiated
    protocol_version: str = "2024-11-05"

    # ============================================
    # Timeouts (seconds, None disables)
    # ============================================
    # Bound on every request/response exchange
    request_timeout: Optional[float] = 30.0

    # Bound on the initialize exchange
    handshake_timeout: Optional[float] = 10.0

    # Bound on the best-effort shutdown request during disconnect
    shutdown_timeout: float = 2.0

    # Time between SIGTERM and SIGKILL
    terminate_grace_period: float = 2.0

    # Number of stderr lines kept per server for diagnostics
    stderr_tail_lines: int = 50

    # Longest response line accepted from a server (bytes)
    max_line_bytes: int = 16 * 1024 * 1024

    # ============================================
    # Host Bridge (HTTP)
    # ============================================
    bridge_host: str = "127.0.0.1"
    bridge_port: int = 8002
    log_level: str = "INFO"

    # Servers connected on startup, as JSON in MCP_SERVERS, e.g.
    # {"fs": {"command": "npx", "args": ["-y", "@modelcontextprotocol/server-filesystem", "/"]}}
    mcp_servers: Dict[str, ServerConfig] = {}


settings = Settings()

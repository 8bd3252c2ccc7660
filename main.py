"""Host bridge FastAPI application."""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import config as app_config
from clients import ClientRegistry
from routers import servers

# Configure logging
logging.basicConfig(
    level=app_config.settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the registry for the lifetime of the process."""
    registry = ClientRegistry()
    app.state.registry = registry

    if app_config.settings.mcp_servers:
        logger.info(f"[BRIDGE] Connecting {len(app_config.settings.mcp_servers)} configured server(s)")
        results = await registry.connect_configured(app_config.settings.mcp_servers)
        for name, outcome in results.items():
            logger.info(f"[BRIDGE] {name}: {outcome}")

    try:
        yield
    finally:
        await registry.close()


# Create FastAPI app
app = FastAPI(
    title="MCP stdio Bridge",
    description="Connects a host application to stdio MCP servers",
    version=app_config.settings.client_version,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(servers.router, tags=["MCP Servers"])


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "servers": await app.state.registry.list_connected()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=app_config.settings.bridge_host, port=app_config.settings.bridge_port)

import json
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from common_client import ClientConfig, ResilientClient
from mcp_server import McpServer
from mcp_tools import register_all_tools
from mcp_types import INTERNAL_ERROR, PARSE_ERROR
from service_config import ServerSettings, load_configured_services, load_server_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_clients(configs: Dict[str, ClientConfig]) -> Dict[str, ResilientClient]:
    return {name: ResilientClient(config) for name, config in configs.items()}


def create_app(
    settings: Optional[ServerSettings] = None,
    clients: Optional[Dict[str, ResilientClient]] = None,
) -> FastAPI:
    """
    Build the MCP HTTP server.

    Without arguments, settings and service configs come from the environment
    (and .env) when the app starts. Missing credentials for an enabled
    service stop startup with a ConfigurationError.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal settings, clients
        if settings is None or clients is None:
            load_dotenv(override=True)
        if settings is None:
            settings = load_server_settings()
            configure_logging(settings.log_level)
        owned = clients is None
        if clients is None:
            clients = build_clients(load_configured_services())

        server = McpServer()
        register_all_tools(server, clients)
        app.state.settings = settings
        app.state.clients = clients
        app.state.mcp_server = server
        logger.info("Registered %d MCP tools for services: %s", len(server.tools), ", ".join(clients) or "none")
        try:
            yield
        finally:
            if owned:
                for client in clients.values():
                    await client.aclose()

    app = FastAPI(
        title="media-mcp: media service tool server",
        version="1.0.0",
        description="MCP server exposing Sonarr, Radarr, Prowlarr, Overseerr, Gotify, qBittorrent, SABnzbd, Tautulli and TMDB",
        lifespan=lifespan,
    )

    def verify_api_key(request: Request, credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)):
        """Verify the Bearer token against the configured API key."""
        tool_api_key = request.app.state.settings.tool_api_key
        if not tool_api_key or credentials.credentials != tool_api_key:
            raise HTTPException(status_code=403, detail="Invalid or missing Bearer token")

    @app.get("/", summary="Health check")
    async def root():
        """Basic health check endpoint."""
        return {"status": "healthy", "service": "media-mcp", "services": sorted(app.state.clients)}

    @app.post("/mcp", tags=["mcp"], dependencies=[Depends(verify_api_key)])
    async def mcp_endpoint(request: Request):
        """Model Context Protocol (MCP) JSON-RPC endpoint."""
        try:
            request_data = await request.json()
        except json.JSONDecodeError:
            return {"jsonrpc": "2.0", "id": None, "error": {"code": PARSE_ERROR, "message": "Parse error"}}

        try:
            response = await request.app.state.mcp_server.handle_jsonrpc_request(request_data)
        except Exception as e:
            logger.exception("MCP request failed")
            return {"jsonrpc": "2.0", "id": None, "error": {"code": INTERNAL_ERROR, "message": "Internal error", "data": str(e)}}
        if response is None:
            return Response(status_code=202)
        return response

    return app


app = create_app()

#!/usr/bin/env python3
"""
MCP over stdio for desktop hosts.
Reads one JSON-RPC request per line from stdin and writes one response per
line to stdout. Logs go to stderr.
"""
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from main import build_clients
from mcp_server import McpServer
from mcp_tools import register_all_tools
from mcp_types import PARSE_ERROR
from service_config import load_configured_services, load_server_settings

logger = logging.getLogger("mcp_stdio")


def write_message(message: dict) -> None:
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


async def serve(server: McpServer) -> None:
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            break
        line = line.strip()
        if not line:
            continue

        try:
            request = json.loads(line)
        except json.JSONDecodeError:
            write_message({"jsonrpc": "2.0", "id": None, "error": {"code": PARSE_ERROR, "message": "Parse error"}})
            continue

        response = await server.handle_jsonrpc_request(request)
        if response is not None:
            write_message(response)


async def main() -> None:
    """Main stdio loop"""
    load_dotenv(override=True)
    settings = load_server_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    clients = build_clients(load_configured_services())
    server = McpServer()
    register_all_tools(server, clients)
    logger.info("Serving %d tools over stdio", len(server.tools))
    try:
        await serve(server)
    finally:
        for client in clients.values():
            await client.aclose()


def cli() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()

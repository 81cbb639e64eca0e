"""
MCP tools for the configured media services.

Tools are thin pass-throughs: each one names an endpoint on one service and
maps tool arguments onto path placeholders, query parameters or a JSON body.
All HTTP work goes through the service's ResilientClient.
"""
from dataclasses import dataclass, field
from string import Formatter
from typing import Any, Dict, Optional, Tuple

from common_client import ResilientClient
from mcp_server import McpServer
from service_config import SERVICES


def _string(description: str) -> Dict[str, Any]:
    return {"type": "string", "description": description}


def _integer(description: str) -> Dict[str, Any]:
    return {"type": "integer", "description": description}


def _boolean(description: str, default: bool = False) -> Dict[str, Any]:
    return {"type": "boolean", "description": description, "default": default}


@dataclass(frozen=True)
class EndpointTool:
    name: str
    service: str
    description: str
    path: str
    method: str = "GET"
    properties: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    required: Tuple[str, ...] = ()
    fixed_params: Dict[str, Any] = field(default_factory=dict)
    send_body: bool = False
    unwrap: Tuple[str, ...] = ()

    @property
    def path_fields(self) -> Tuple[str, ...]:
        return tuple(name for _, name, _, _ in Formatter().parse(self.path) if name)

    def input_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": "object", "properties": dict(self.properties)}
        if self.required:
            schema["required"] = list(self.required)
        return schema

    def build_call(self, arguments: Dict[str, Any]) -> Tuple[str, Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """Split tool arguments into (path, query params, json body)."""
        missing = [name for name in self.required if arguments.get(name) is None]
        if missing:
            raise ValueError(f"missing required argument(s): {', '.join(missing)}")

        path_fields = self.path_fields
        path = self.path.format(**{name: arguments[name] for name in path_fields})
        rest = {
            key: value for key, value in arguments.items()
            if key in self.properties and key not in path_fields and value is not None
        }
        if self.send_body:
            return path, dict(self.fixed_params) or None, rest
        return path, {**self.fixed_params, **rest} or None, None

    def unwrap_result(self, result: Any) -> Any:
        for key in self.unwrap:
            if not isinstance(result, dict):
                break
            result = result.get(key)
        return result


ENDPOINT_TOOLS = [
    # Sonarr
    EndpointTool("search_sonarr_series", "sonarr", "Search for TV series to add to Sonarr by title.",
                 "series/lookup", properties={"term": _string("Series title or 'tvdb:<id>'")}, required=("term",)),
    EndpointTool("list_sonarr_series", "sonarr", "List all TV series in the Sonarr library.", "series"),
    EndpointTool("get_sonarr_episodes", "sonarr", "Get all episodes for a TV series.", "episode",
                 properties={"seriesId": _integer("The series ID in Sonarr")}, required=("seriesId",)),
    EndpointTool("get_sonarr_calendar", "sonarr", "Get upcoming episodes between two ISO dates.", "calendar",
                 properties={"start": _string("Start date (ISO 8601)"), "end": _string("End date (ISO 8601)")}),
    EndpointTool("get_sonarr_queue", "sonarr", "Get the Sonarr download queue.", "queue", unwrap=("records",)),
    EndpointTool("add_sonarr_series", "sonarr", "Add a new TV series to Sonarr.", "series", method="POST",
                 properties={
                     "tvdbId": _integer("TVDB ID of the series"),
                     "title": _string("Series title"),
                     "qualityProfileId": _integer("Quality profile ID"),
                     "rootFolderPath": _string("Root folder path"),
                     "monitored": _boolean("Whether to monitor the series", True),
                 },
                 required=("tvdbId", "title", "qualityProfileId", "rootFolderPath"), send_body=True),
    # Radarr
    EndpointTool("lookup_radarr_movie", "radarr", "Search for movies to add to Radarr by title.", "movie/lookup",
                 properties={"term": _string("Movie title or 'tmdb:<id>'")}, required=("term",)),
    EndpointTool("list_radarr_movies", "radarr", "List all movies in the Radarr library.", "movie"),
    EndpointTool("get_radarr_movie", "radarr", "Get one movie from the Radarr library.", "movie/{movie_id}",
                 properties={"movie_id": _integer("The movie ID in Radarr")}, required=("movie_id",)),
    EndpointTool("get_radarr_queue", "radarr", "Get the Radarr download queue.", "queue", unwrap=("records",)),
    # Prowlarr
    EndpointTool("list_prowlarr_indexers", "prowlarr", "List indexers configured in Prowlarr.", "indexer"),
    EndpointTool("search_prowlarr", "prowlarr", "Search all Prowlarr indexers for releases.", "search",
                 properties={"query": _string("Search query"), "type": _string("Search type, e.g. 'search' or 'tvsearch'")},
                 required=("query",)),
    EndpointTool("get_prowlarr_indexer_stats", "prowlarr", "Get indexer statistics from Prowlarr.", "indexerstats"),
    EndpointTool("test_prowlarr_indexer", "prowlarr", "Test one Prowlarr indexer.", "indexer/{indexer_id}/test",
                 method="POST", properties={"indexer_id": _integer("Indexer ID")}, required=("indexer_id",),
                 send_body=True),
    # Overseerr
    EndpointTool("search_overseerr", "overseerr", "Search Overseerr for movies and TV shows.", "search",
                 properties={"query": _string("Search query"), "page": _integer("Result page")}, required=("query",)),
    EndpointTool("list_overseerr_requests", "overseerr", "List media requests in Overseerr.", "request",
                 properties={
                     "take": _integer("Number of requests to return"),
                     "skip": _integer("Number of requests to skip"),
                     "filter": _string("all, approved, available, pending, processing, unavailable"),
                 },
                 unwrap=("results",)),
    EndpointTool("create_overseerr_request", "overseerr", "Request a movie or TV show in Overseerr.", "request",
                 method="POST",
                 properties={"mediaType": _string("'movie' or 'tv'"), "mediaId": _integer("TMDB ID of the media")},
                 required=("mediaType", "mediaId"), send_body=True),
    # Gotify
    EndpointTool("send_gotify_message", "gotify", "Send a notification through Gotify.", "message", method="POST",
                 properties={
                     "message": _string("Message body"),
                     "title": _string("Message title"),
                     "priority": _integer("Priority (0-10)"),
                 },
                 required=("message",), send_body=True),
    EndpointTool("get_gotify_health", "gotify", "Get Gotify server health.", "health"),
    # qBittorrent
    EndpointTool("list_qbittorrent_torrents", "qbittorrent", "List torrents in qBittorrent.", "torrents/info",
                 properties={"filter": _string("all, downloading, completed, paused, active, inactive"),
                             "category": _string("Only torrents in this category")}),
    EndpointTool("get_qbittorrent_transfer_info", "qbittorrent", "Get global transfer speeds and totals.",
                 "transfer/info"),
    # SABnzbd
    EndpointTool("get_sabnzbd_queue", "sabnzbd", "Get the SABnzbd download queue.", "",
                 fixed_params={"mode": "queue", "output": "json"}, unwrap=("queue",)),
    EndpointTool("get_sabnzbd_history", "sabnzbd", "Get SABnzbd download history.", "",
                 properties={"limit": _integer("Number of entries to return")},
                 fixed_params={"mode": "history", "output": "json"}, unwrap=("history",)),
    # Tautulli
    EndpointTool("get_tautulli_activity", "tautulli", "Get current Plex streaming activity.", "",
                 fixed_params={"cmd": "get_activity"}, unwrap=("response", "data")),
    EndpointTool("get_tautulli_history", "tautulli", "Get Plex playback history.", "",
                 properties={"length": _integer("Number of entries to return"), "user": _string("Filter by user")},
                 fixed_params={"cmd": "get_history"}, unwrap=("response", "data")),
    # TMDB
    EndpointTool("search_tmdb_movies", "tmdb", "Search TMDB for movies.", "search/movie",
                 properties={"query": _string("Movie title"), "year": _integer("Release year")}, required=("query",)),
    EndpointTool("search_tmdb_tv", "tmdb", "Search TMDB for TV shows.", "search/tv",
                 properties={"query": _string("Show title")}, required=("query",)),
    EndpointTool("get_tmdb_movie", "tmdb", "Get TMDB details for one movie.", "movie/{movie_id}",
                 properties={"movie_id": _integer("TMDB movie ID")}, required=("movie_id",)),
]


def make_endpoint_handler(tool: EndpointTool, client: ResilientClient):
    async def handler(arguments: Dict[str, Any]) -> Any:
        path, params, body = tool.build_call(arguments)
        result = await client.execute(path, tool.method, params=params, json_data=body)
        return tool.unwrap_result(result)
    return handler


def register_service_tools(server: McpServer, clients: Dict[str, ResilientClient]) -> int:
    """Register the endpoint tools of every configured service. Returns the tool count."""
    count = 0
    for tool in ENDPOINT_TOOLS:
        client = clients.get(tool.service)
        if client is None:
            continue
        server.register_tool(tool.name, tool.description, tool.input_schema(), make_endpoint_handler(tool, client))
        count += 1
    return count


def register_admin_tools(server: McpServer, clients: Dict[str, ResilientClient]):
    """Register tools that report on the configured services themselves."""

    async def list_configured_services(arguments: Dict[str, Any]):
        return [
            {"name": name, "displayName": SERVICES[name].display_name, "url": client.config.base_url}
            for name, client in clients.items()
        ]

    async def check_service_connection(arguments: Dict[str, Any]):
        name = arguments["service"].lower()
        client = clients.get(name)
        if client is None:
            raise ValueError(f"service '{name}' is not configured")
        reachable = await client.test_connection(SERVICES[name].health_endpoint)
        return {"service": SERVICES[name].display_name, "reachable": reachable}

    service_property = {"type": "string", "description": "Service name"}
    # JSON Schema forbids an empty enum.
    if clients:
        service_property["enum"] = sorted(clients)

    server.register_tool(
        "list_configured_services",
        "List the media services this server is configured to talk to.",
        {"type": "object", "properties": {}},
        list_configured_services,
    )
    server.register_tool(
        "check_service_connection",
        "Check whether a configured media service is reachable with the configured credentials.",
        {
            "type": "object",
            "properties": {"service": service_property},
            "required": ["service"],
        },
        check_service_connection,
    )


def register_all_tools(server: McpServer, clients: Dict[str, ResilientClient]) -> None:
    """Register all MCP tools"""
    register_service_tools(server, clients)
    register_admin_tools(server, clients)

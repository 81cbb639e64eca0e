"""
Configured backends.

Each supported service is described once in SERVICES. At startup the
environment is read into one ClientConfig per enabled service; nothing
reads the environment after that.
"""
import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from pydantic import ValidationError

from common_client import AuthScheme, ClientConfig
from errors import ConfigurationError


@dataclass(frozen=True)
class ServiceDefinition:
    name: str
    display_name: str
    env_prefix: str
    api_prefix: str
    auth_scheme: AuthScheme
    auth_name: str
    credential_env: str
    health_endpoint: str
    default_url: Optional[str] = None


SERVICES: Dict[str, ServiceDefinition] = {
    definition.name: definition
    for definition in [
        ServiceDefinition("sonarr", "Sonarr", "SONARR", "/api/v3", AuthScheme.HEADER, "X-Api-Key",
                          "SONARR_API_KEY", "system/status", "http://localhost:8989"),
        ServiceDefinition("radarr", "Radarr", "RADARR", "/api/v3", AuthScheme.HEADER, "X-Api-Key",
                          "RADARR_API_KEY", "system/status", "http://localhost:7878"),
        ServiceDefinition("prowlarr", "Prowlarr", "PROWLARR", "/api/v1", AuthScheme.HEADER, "X-Api-Key",
                          "PROWLARR_API_KEY", "system/status", "http://localhost:9696"),
        ServiceDefinition("overseerr", "Overseerr", "OVERSEERR", "/api/v1", AuthScheme.HEADER, "X-Api-Key",
                          "OVERSEERR_API_KEY", "status"),
        ServiceDefinition("gotify", "Gotify", "GOTIFY", "", AuthScheme.HEADER, "X-Gotify-Key",
                          "GOTIFY_APP_TOKEN", "health"),
        ServiceDefinition("qbittorrent", "qBittorrent", "QBITTORRENT", "/api/v2", AuthScheme.COOKIE, "SID",
                          "QBITTORRENT_SID", "app/version"),
        ServiceDefinition("sabnzbd", "SABnzbd", "SABNZBD", "/api", AuthScheme.QUERY, "apikey",
                          "SABNZBD_API_KEY", ""),
        ServiceDefinition("tautulli", "Tautulli", "TAUTULLI", "/api/v2", AuthScheme.QUERY, "apikey",
                          "TAUTULLI_API_KEY", ""),
        ServiceDefinition("tmdb", "TMDB", "TMDB", "/3", AuthScheme.QUERY, "api_key",
                          "TMDB_API_KEY", "configuration", "https://api.themoviedb.org"),
    ]
}


@dataclass(frozen=True)
class ServerSettings:
    tool_api_key: str
    log_level: str = "INFO"


def load_server_settings(env: Mapping[str, str] = os.environ) -> ServerSettings:
    return ServerSettings(
        tool_api_key=env.get("TOOL_API_KEY", ""),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


def is_enabled(definition: ServiceDefinition, env: Mapping[str, str] = os.environ) -> bool:
    """A service is enabled as soon as its URL or credential is set."""
    return bool(env.get(f"{definition.env_prefix}_URL") or env.get(definition.credential_env))


def _override(env: Mapping[str, str], definition: ServiceDefinition, suffix: str, cast):
    key = f"{definition.env_prefix}_{suffix}"
    raw = env.get(key)
    if raw is None or raw == "":
        return None
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(definition.display_name, f"{key} must be a number, got '{raw}'")


def load_client_config(name: str, env: Mapping[str, str] = os.environ) -> ClientConfig:
    """Build the ClientConfig for one service. Missing credentials are fatal."""
    definition = SERVICES.get(name.lower())
    if definition is None:
        raise ConfigurationError(name, "unknown service")

    url = env.get(f"{definition.env_prefix}_URL") or definition.default_url
    if not url:
        raise ConfigurationError(definition.display_name, f"{definition.env_prefix}_URL environment variable is required")
    credential = env.get(definition.credential_env, "")
    if not credential.strip():
        raise ConfigurationError(definition.display_name, f"{definition.credential_env} environment variable is required")

    overrides = {
        "timeout_ms": _override(env, definition, "TIMEOUT_MS", int),
        "max_retries": _override(env, definition, "MAX_RETRIES", int),
        "requests_per_second": _override(env, definition, "REQUESTS_PER_SECOND", float),
    }
    try:
        return ClientConfig(
            base_url=url,
            credential=credential,
            auth_scheme=definition.auth_scheme,
            auth_name=definition.auth_name,
            api_prefix=definition.api_prefix,
            service_name=definition.display_name,
            **{key: value for key, value in overrides.items() if value is not None},
        )
    except ValidationError as e:
        raise ConfigurationError(definition.display_name, str(e)) from e


def load_configured_services(env: Mapping[str, str] = os.environ) -> Dict[str, ClientConfig]:
    """Return a ClientConfig for every enabled service, keyed by service name."""
    return {
        name: load_client_config(name, env)
        for name, definition in SERVICES.items()
        if is_enabled(definition, env)
    }

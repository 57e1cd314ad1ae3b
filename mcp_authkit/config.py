"""Discovery of remote MCP servers and runtime settings.

Servers come from the ``mcpServers`` object of any JSON file with "mcp" in
its name, looked up in the working directory, ``./.claude`` and
``~/.claude``. Only entries with a ``url`` are remote servers; stdio
entries are ignored. String values may reference environment variables as
``${NAME}``, optionally loaded from a ``.env`` file first.
"""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .oauth.callback import DEFAULT_PORT, DEFAULT_PORT_RANGE_END
from .oauth.provider import OAuthSettings

CALLBACK_PORT_ENV = "MCP_AUTHKIT_CALLBACK_PORT"
CALLBACK_PORT_END_ENV = "MCP_AUTHKIT_CALLBACK_PORT_END"

_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")

# Searched in order; earlier directories win on duplicate server names
CONFIG_SEARCH_DIRS = [
    Path("."),
    Path(".claude"),
    Path.home() / ".claude",
]

ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".claude" / ".env",
]

EXAMPLE_CONFIG = """{
  "mcpServers": {
    "notion": {
      "url": "https://mcp.notion.com/mcp",
      "oauth": {"clientId": "${NOTION_CLIENT_ID}"}
    }
  }
}"""


def expand_env(value: str) -> str:
    """Replace every ${NAME} in value; unset variables become empty."""
    return _ENV_REFERENCE.sub(lambda m: os.environ.get(m.group(1), ""), value)


def _setting(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    return expand_env(str(value)) or None


@dataclass
class ServerConfig:
    """A remote MCP server entry."""

    name: str
    url: str
    oauth: OAuthSettings | None = None


@dataclass
class Config:
    """Remote servers merged from every discovered config file."""

    servers: dict[str, ServerConfig] = field(default_factory=dict)
    config_path: Path | None = None
    config_paths: list[Path] = field(default_factory=list)
    env_path: Path | None = None


@dataclass
class CallbackSettings:
    """Port policy of the loopback callback listener."""

    port: int = DEFAULT_PORT
    port_range_end: int = DEFAULT_PORT_RANGE_END


def find_config_files(explicit_path: Path | None = None) -> list[Path]:
    """Collect config files, de-duplicated by resolved path.

    An explicit path disables discovery and is returned only if it exists.
    """
    if explicit_path is not None:
        return [explicit_path] if explicit_path.exists() else []

    found: dict[Path, Path] = {}
    for directory in CONFIG_SEARCH_DIRS:
        if not directory.is_dir():
            continue
        for candidate in sorted(directory.glob("*.json")):
            if "mcp" in candidate.name.lower():
                found.setdefault(candidate.resolve(), candidate)
    return list(found.values())


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Pick the .env file to load, if any."""
    candidates = [explicit_path] if explicit_path is not None else ENV_SEARCH_PATHS
    return next((path for path in candidates if path.exists()), None)


def parse_oauth_settings(data: dict[str, Any] | None) -> OAuthSettings | None:
    """Parse the optional "oauth" block of a server entry.

    Recognized keys are ``clientId``, ``clientSecret`` and ``scope``.
    """
    if not data:
        return None
    return OAuthSettings(
        client_id=_setting(data, "clientId"),
        client_secret=_setting(data, "clientSecret"),
        scope=_setting(data, "scope"),
    )


def parse_server_config(name: str, data: dict[str, Any]) -> ServerConfig | None:
    """Build a ServerConfig, or None for entries without a URL."""
    url = _setting(data, "url")
    if url is None:
        return None
    return ServerConfig(name=name, url=url, oauth=parse_oauth_settings(data.get("oauth")))


def load_config(
    config_path: Path | None = None,
    env_path: Path | None = None,
) -> Config:
    """Load every remote server from the discovered config files.

    The .env file is loaded before parsing so ${NAME} references can use
    it; variables already set in the environment are not overridden.

    Raises:
        FileNotFoundError: If no config file exists
        json.JSONDecodeError: If a config file is not valid JSON
    """
    env_file = find_env_file(env_path)
    if env_file is not None:
        load_dotenv(env_file)

    config_files = find_config_files(config_path)
    if not config_files:
        searched = ", ".join(str(directory) for directory in CONFIG_SEARCH_DIRS)
        raise FileNotFoundError(
            f"No MCP config file found (looked for *mcp*.json in {searched}).\n\n"
            f"Example mcp.json:\n{EXAMPLE_CONFIG}"
        )

    servers: dict[str, ServerConfig] = {}
    for path in config_files:
        data = json.loads(path.read_text(encoding="utf-8"))
        for name, entry in data.get("mcpServers", {}).items():
            if name in servers or not isinstance(entry, dict):
                continue
            server = parse_server_config(name, entry)
            if server is not None:
                servers[name] = server

    return Config(
        servers=servers,
        config_path=config_files[0],
        config_paths=config_files,
        env_path=env_file,
    )


def load_callback_settings() -> CallbackSettings:
    """Read the callback port range from the environment.

    Without an explicit end, the range runs to the default end, or is
    just the configured port when that lies beyond it.

    Raises:
        ValueError: If a port variable is not an integer
    """
    port = int(os.environ.get(CALLBACK_PORT_ENV, DEFAULT_PORT))
    end = os.environ.get(CALLBACK_PORT_END_ENV)
    port_range_end = int(end) if end else max(port, DEFAULT_PORT_RANGE_END)
    return CallbackSettings(port=port, port_range_end=port_range_end)

"""Tests for config discovery and loading."""

import json
import os
from pathlib import Path

import pytest

from mcp_authkit import config as config_module
from mcp_authkit.config import (
    expand_env,
    find_config_files,
    find_env_file,
    load_callback_settings,
    load_config,
    parse_oauth_settings,
    parse_server_config,
)
from mcp_authkit.oauth.callback import DEFAULT_PORT, DEFAULT_PORT_RANGE_END


class TestExpandEnv:
    """Tests for ${VAR} substitution."""

    def test_no_vars(self) -> None:
        """Test plain strings pass through."""
        assert expand_env("https://example.com") == "https://example.com"

    def test_full_and_partial(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test full and embedded references."""
        monkeypatch.setenv("HOST", "example.com")
        monkeypatch.setenv("ID", "abc")
        assert expand_env("${ID}") == "abc"
        assert expand_env("https://${HOST}/mcp?id=${ID}") == "https://example.com/mcp?id=abc"

    def test_missing_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that unknown variables resolve to empty strings."""
        monkeypatch.delenv("DOES_NOT_EXIST", raising=False)
        assert expand_env("x${DOES_NOT_EXIST}y") == "xy"


class TestParseServerConfig:
    """Tests for single server entries."""

    def test_remote_server(self) -> None:
        """Test an entry with a URL."""
        server = parse_server_config("notion", {"url": "https://mcp.notion.com/mcp"})
        assert server is not None
        assert server.name == "notion"
        assert server.url == "https://mcp.notion.com/mcp"
        assert server.oauth is None

    def test_stdio_server_skipped(self) -> None:
        """Test that command-based servers are not remote servers."""
        assert parse_server_config("local", {"command": "python"}) is None

    def test_oauth_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test parsing the oauth block with env references."""
        monkeypatch.setenv("LINEAR_SECRET", "shh")
        server = parse_server_config(
            "linear",
            {
                "url": "https://mcp.linear.app/mcp",
                "oauth": {"clientId": "id", "clientSecret": "${LINEAR_SECRET}", "scope": "read"},
            },
        )
        assert server is not None and server.oauth is not None
        assert server.oauth.client_id == "id"
        assert server.oauth.client_secret == "shh"
        assert server.oauth.scope == "read"

    def test_empty_oauth_values_become_none(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that unresolved references read as unset."""
        monkeypatch.delenv("UNSET_CLIENT_ID", raising=False)
        settings = parse_oauth_settings({"clientId": "${UNSET_CLIENT_ID}"})
        assert settings is not None
        assert settings.client_id is None

    def test_empty_oauth_block(self) -> None:
        """Test that an empty block means no static settings."""
        assert parse_oauth_settings({}) is None
        assert parse_oauth_settings(None) is None


class TestFindFiles:
    """Tests for config and env discovery."""

    def test_explicit_config_path(self, config_file: Path) -> None:
        """Test that an explicit path is used as-is."""
        assert find_config_files(config_file) == [config_file]

    def test_explicit_missing_path(self, tmp_path: Path) -> None:
        """Test that a missing explicit path finds nothing."""
        assert find_config_files(tmp_path / "missing.json") == []

    def test_discovery_requires_mcp_in_name(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that only *mcp*.json files are discovered."""
        (tmp_path / "mcp.json").write_text("{}")
        (tmp_path / "other.json").write_text("{}")
        (tmp_path / "my-MCP-servers.json").write_text("{}")
        monkeypatch.setattr(config_module, "CONFIG_SEARCH_DIRS", [tmp_path, tmp_path / "missing"])

        names = [p.name for p in find_config_files()]
        assert names == ["mcp.json", "my-MCP-servers.json"]

    def test_find_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test env file lookup order."""
        env_path = tmp_path / ".env"
        env_path.write_text("A=1\n")
        monkeypatch.setattr(config_module, "ENV_SEARCH_PATHS", [tmp_path / "none", env_path])

        assert find_env_file() == env_path
        assert find_env_file(tmp_path / "explicit.env") is None


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_explicit(self, config_file: Path) -> None:
        """Test loading remote servers from a config file."""
        config = load_config(config_file, env_path=config_file.parent / "no.env")

        assert sorted(config.servers) == ["linear", "notion"]
        assert config.config_path == config_file
        assert config.servers["linear"].oauth is not None
        assert config.servers["linear"].oauth.client_id == "static-client"

    def test_no_config_found(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the error when nothing is discovered."""
        monkeypatch.setattr(config_module, "CONFIG_SEARCH_DIRS", [tmp_path])
        monkeypatch.setattr(config_module, "ENV_SEARCH_PATHS", [])

        with pytest.raises(FileNotFoundError, match="No MCP config file found"):
            load_config()

    def test_invalid_json(self, tmp_path: Path) -> None:
        """Test that a broken config file raises."""
        path = tmp_path / "mcp.json"
        path.write_text("{ invalid json }")
        with pytest.raises(json.JSONDecodeError):
            load_config(path, env_path=tmp_path / "no.env")

    def test_first_definition_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test merging servers across several files."""
        (tmp_path / "a-mcp.json").write_text(json.dumps({
            "mcpServers": {"notion": {"url": "https://first.example.com/mcp"}}
        }))
        (tmp_path / "b-mcp.json").write_text(json.dumps({
            "mcpServers": {
                "notion": {"url": "https://second.example.com/mcp"},
                "linear": {"url": "https://mcp.linear.app/mcp"},
            }
        }))
        monkeypatch.setattr(config_module, "CONFIG_SEARCH_DIRS", [tmp_path])
        monkeypatch.setattr(config_module, "ENV_SEARCH_PATHS", [])

        config = load_config()

        assert config.servers["notion"].url == "https://first.example.com/mcp"
        assert "linear" in config.servers
        assert len(config.config_paths) == 2

    def test_env_file_is_loaded(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that .env values feed ${VAR} references."""
        monkeypatch.delenv("AUTHKIT_TEST_HOST", raising=False)
        env_path = tmp_path / ".env"
        env_path.write_text("AUTHKIT_TEST_HOST=env.example.com\n")
        config_path = tmp_path / "mcp.json"
        config_path.write_text(json.dumps({
            "mcpServers": {"remote": {"url": "https://${AUTHKIT_TEST_HOST}/mcp"}}
        }))

        config = load_config(config_path, env_path)

        assert config.env_path == env_path
        assert config.servers["remote"].url == "https://env.example.com/mcp"
        assert os.environ["AUTHKIT_TEST_HOST"] == "env.example.com"


class TestCallbackSettings:
    """Tests for callback listener settings."""

    def test_defaults(self) -> None:
        """Test the pre-registered port range."""
        settings = load_callback_settings()
        assert settings.port == DEFAULT_PORT
        assert settings.port_range_end == DEFAULT_PORT_RANGE_END

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test overriding the port from the environment."""
        monkeypatch.setenv("MCP_AUTHKIT_CALLBACK_PORT", "30000")
        settings = load_callback_settings()
        assert settings.port == 30000
        assert settings.port_range_end == 30000

    def test_env_range_end(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test overriding both ends of the range."""
        monkeypatch.setenv("MCP_AUTHKIT_CALLBACK_PORT", "30000")
        monkeypatch.setenv("MCP_AUTHKIT_CALLBACK_PORT_END", "30005")
        assert load_callback_settings().port_range_end == 30005

    def test_invalid_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a non-numeric port raises."""
        monkeypatch.setenv("MCP_AUTHKIT_CALLBACK_PORT", "not-a-port")
        with pytest.raises(ValueError):
            load_callback_settings()

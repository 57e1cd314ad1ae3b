"""Shared fixtures and utilities for mcp-authkit tests."""

import json
from collections.abc import Generator
from pathlib import Path

import pytest

from mcp_authkit.config import Config, ServerConfig
from mcp_authkit.oauth import CallbackServer, CredentialStore, OAuthSettings


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point the credential directory at a temporary location for every test."""
    data_dir = tmp_path / "data"
    monkeypatch.setenv("MCP_AUTHKIT_DATA_DIR", str(data_dir))
    monkeypatch.delenv("MCP_AUTHKIT_CALLBACK_PORT", raising=False)
    monkeypatch.delenv("MCP_AUTHKIT_CALLBACK_PORT_END", raising=False)
    yield data_dir


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Location of the credential file used by the store fixture."""
    return tmp_path / "store" / "mcp-auth.json"


@pytest.fixture
def store(store_path: Path) -> CredentialStore:
    """Create a credential store in a temporary directory."""
    return CredentialStore(store_path)


@pytest.fixture
def callback_server() -> CallbackServer:
    """Create a callback server on an OS-assigned port with a short deadline."""
    return CallbackServer(port=0, timeout=5)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_config(tmp_path: Path) -> Config:
    """Create a sample configuration with two remote servers."""
    return Config(
        servers={
            "notion": ServerConfig(name="notion", url="https://mcp.notion.com/mcp"),
            "linear": ServerConfig(
                name="linear",
                url="https://mcp.linear.app/mcp",
                oauth=OAuthSettings(client_id="static-client", scope="read"),
            ),
        },
        config_path=tmp_path / "mcp.json",
        env_path=None,
    )


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a config file with remote and stdio servers."""
    config_data = {
        "mcpServers": {
            "notion": {"url": "https://mcp.notion.com/mcp"},
            "linear": {
                "url": "https://mcp.linear.app/mcp",
                "oauth": {"clientId": "static-client", "scope": "read"},
            },
            "local": {"command": "python", "args": ["-m", "local_server"]},
        }
    }
    path = tmp_path / "mcp.json"
    path.write_text(json.dumps(config_data))
    return path

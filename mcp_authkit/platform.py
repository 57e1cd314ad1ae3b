"""Cross-platform locations for persisted authentication data."""

import os
import sys
from pathlib import Path

# Platform detection
IS_WINDOWS = sys.platform == "win32"
IS_MACOS = sys.platform == "darwin"

APP_DIR_NAME = "mcp-authkit"

# Explicit override for the credential directory
DATA_DIR_ENV = "MCP_AUTHKIT_DATA_DIR"


def get_data_dir() -> Path:
    """Get the per-user application data directory.

    Priority order:
    1. MCP_AUTHKIT_DATA_DIR - explicit override for testing/advanced usage
    2. %APPDATA% on Windows
    3. ~/Library/Application Support on macOS
    4. $XDG_DATA_HOME or ~/.local/share elsewhere
    """
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()

    if IS_WINDOWS:
        base = os.environ.get("APPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Roaming"
    elif IS_MACOS:
        root = Path.home() / "Library" / "Application Support"
    else:
        xdg = os.environ.get("XDG_DATA_HOME")
        root = Path(xdg) if xdg else Path.home() / ".local" / "share"

    return root / APP_DIR_NAME


def get_credentials_path() -> Path:
    """Get the path of the JSON credential file."""
    return get_data_dir() / "mcp-auth.json"

"""mcp-authkit - browser-based OAuth authorization for remote MCP servers."""

from importlib import import_module
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mcp-authkit")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Not installed, e.g. running from a checkout

# Public name -> submodule that defines it
_EXPORTS = {
    "Config": ".config",
    "ServerConfig": ".config",
    "load_config": ".config",
    "AuthManager": ".oauth",
    "AuthProvider": ".oauth",
    "CallbackServer": ".oauth",
    "CredentialStore": ".oauth",
}

__all__ = ["__version__", *_EXPORTS]


def __getattr__(name: str) -> object:
    """Import public components on first access."""
    module = _EXPORTS.get(name)
    if module is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(import_module(module, __name__), name)

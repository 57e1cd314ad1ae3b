"""OAuth 2.0 authorization support for MCP servers.

This package lets an application authorize against any number of
independently configured MCP servers using the authorization-code flow
with PKCE and optional Dynamic Client Registration.

Main Components:
    AuthManager: Owns the shared store and callback server, hands out providers
    AuthProvider: Per-server adapter consumed by the OAuth engine
    CallbackServer: Loopback listener receiving browser redirects
    CredentialStore: JSON file of per-server credentials

Quick Start:
    from mcp_authkit.oauth import AuthManager, authorize

    manager = AuthManager(on_redirect=webbrowser.open)
    provider = manager.get_provider("notion", "https://mcp.notion.com/mcp")
    await authorize(provider)
    await manager.shutdown()
"""

from .callback import (
    AuthorizationDeniedError,
    CallbackCancelledError,
    CallbackError,
    CallbackResult,
    CallbackServer,
    CallbackTimeoutError,
)
from .connector import authorize, create_oauth_client
from .manager import AuthManager, AuthStatus
from .provider import AuthProvider, OAuthSequenceError, OAuthSettings
from .store import CredentialStore
from .tokens import AuthEntry, ExpiryStatus, StoredClientInfo, StoredTokens

__all__ = [
    # Manager (main entry point)
    "AuthManager",
    "AuthStatus",
    # Provider
    "AuthProvider",
    "OAuthSettings",
    "OAuthSequenceError",
    # Engine wiring
    "authorize",
    "create_oauth_client",
    # Callback server
    "CallbackServer",
    "CallbackResult",
    "CallbackError",
    "CallbackTimeoutError",
    "CallbackCancelledError",
    "AuthorizationDeniedError",
    # Storage
    "CredentialStore",
    "AuthEntry",
    "StoredTokens",
    "StoredClientInfo",
    "ExpiryStatus",
]

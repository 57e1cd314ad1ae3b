"""High-level OAuth manager for mcp-authkit.

This module owns the shared pieces (one credential store, one callback
server) and hands out one AuthProvider per configured server. It is
used by the CLI and can be embedded by any application driving
authorization flows.
"""

import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from .callback import CallbackServer
from .provider import AuthProvider, OAuthSettings, RedirectCallback
from .store import CredentialStore

logger = logging.getLogger(__name__)


# (unit, seconds per unit, switch to the next unit at)
_DURATION_UNITS = [
    ("minute", 60, 60 * 60),
    ("hour", 60 * 60, 24 * 60 * 60),
    ("day", 24 * 60 * 60, 14 * 24 * 60 * 60),
]


def _format_timedelta(td: timedelta) -> str:
    """Render a remaining duration coarsely, e.g. "45 minutes" or "2 weeks"."""
    seconds = int(td.total_seconds())
    if seconds < 0:
        return "Expired"
    if seconds < 60:
        return f"{seconds} seconds"

    for unit, size, limit in _DURATION_UNITS:
        if seconds < limit:
            count = seconds // size
            return f"{count} {unit}{'' if count == 1 else 's'}"

    weeks = seconds // (7 * 24 * 60 * 60)
    return f"{weeks} week{'' if weeks == 1 else 's'}"


@dataclass
class AuthStatus:
    """Authorization state of one configured server, for display.

    ``authenticated`` means tokens are stored for exactly this URL;
    ``url_mismatch`` flags credentials saved under the same name for a
    different URL, which are never used. ``expires_at`` is an ISO 8601
    timestamp in UTC.
    """

    server_name: str
    server_url: str
    authenticated: bool = False
    expired: bool = False
    expires_at: str | None = None
    expires_in_human: str | None = None
    has_refresh_token: bool = False
    has_client: bool = False
    scope: str | None = None
    url_mismatch: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AuthManager:
    """Manages OAuth providers for configured MCP servers.

    Usage:
        manager = AuthManager(on_redirect=webbrowser.open)
        provider = manager.get_provider("github", "https://api.example.com/mcp")
        ...
        await manager.shutdown()
    """

    def __init__(
        self,
        store: CredentialStore | None = None,
        callback_server: CallbackServer | None = None,
        on_redirect: RedirectCallback | None = None,
    ):
        """Initialize the manager.

        Args:
            store: Credential store (defaults to the per-user file)
            callback_server: Shared callback listener
            on_redirect: Default redirect callback for servers whose
                settings do not define one
        """
        self.store = store or CredentialStore()
        self.callback_server = callback_server or CallbackServer()
        self.on_redirect = on_redirect
        self._providers: dict[str, AuthProvider] = {}

    def get_provider(
        self,
        server_name: str,
        server_url: str,
        settings: OAuthSettings | None = None,
    ) -> AuthProvider:
        """Get the provider for a server, creating it on first use.

        A cached provider is replaced when the URL or settings change.
        """
        settings = settings or OAuthSettings()
        if settings.on_redirect is None and self.on_redirect is not None:
            settings = replace(settings, on_redirect=self.on_redirect)

        provider = self._providers.get(server_name)
        if (
            provider is not None
            and provider.server_url == server_url
            and provider.settings == settings
        ):
            return provider

        if provider is not None:
            logger.debug(f"Configuration for {server_name} changed, recreating provider")
            provider.cancel_authorization()

        provider = AuthProvider(server_name, server_url, settings, self.store, self.callback_server)
        self._providers[server_name] = provider
        return provider

    def get_auth_status(self, server_name: str, server_url: str) -> AuthStatus:
        """Get authentication status for a server.

        Args:
            server_name: Configured server name
            server_url: Configured server URL

        Returns:
            AuthStatus with current authentication state
        """
        entry = self.store.get(server_name)
        if entry is None:
            return AuthStatus(server_name=server_name, server_url=server_url)

        if entry.server_url != server_url:
            return AuthStatus(
                server_name=server_name,
                server_url=server_url,
                url_mismatch=entry.tokens is not None or entry.client_info is not None,
            )

        status = AuthStatus(
            server_name=server_name,
            server_url=server_url,
            has_client=entry.client_info is not None,
        )
        token = entry.tokens
        if token is None:
            return status

        status.authenticated = True
        status.expired = token.is_expired()
        status.has_refresh_token = token.has_refresh_token()
        status.scope = token.scope

        if token.expires_at is not None:
            expires_at = datetime.fromtimestamp(token.expires_at / 1000, tz=timezone.utc)
            status.expires_at = expires_at.isoformat()
            remaining = expires_at - datetime.now(timezone.utc)
            if remaining.total_seconds() > 0:
                status.expires_in_human = _format_timedelta(remaining)
            else:
                status.expires_in_human = "Expired"

        return status

    def list_authenticated(self) -> list[str]:
        """Get names of servers with stored tokens."""
        return [name for name, entry in self.store.all().items() if entry.tokens is not None]

    def logout(self, server_name: str) -> bool:
        """Remove stored authentication for a server.

        Also aborts an authorization still waiting for its callback.
        Tokens are not revoked server-side.

        Returns:
            True if credentials were deleted, False if none were stored
        """
        provider = self._providers.pop(server_name, None)
        if provider is not None:
            provider.cancel_authorization()

        oauth_state = self.store.get_oauth_state(server_name)
        if oauth_state:
            self.callback_server.cancel_pending(oauth_state)

        deleted = self.store.remove(server_name)
        if deleted:
            logger.info(f"Logged out from {server_name}")
        return deleted

    def logout_all(self) -> int:
        """Remove stored authentication for every server.

        Returns:
            Number of servers whose credentials were deleted
        """
        entries = self.store.all()
        for provider in self._providers.values():
            provider.cancel_authorization()
        self._providers.clear()
        for entry in entries.values():
            if entry.oauth_state:
                self.callback_server.cancel_pending(entry.oauth_state)

        if not self.store.clear_all():
            return 0
        return len(entries)

    async def shutdown(self) -> None:
        """Stop the callback server, rejecting pending authorizations."""
        await self.callback_server.stop()

"""Tests for wiring providers into the MCP SDK OAuth engine."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from mcp.client.auth import OAuthClientProvider

from mcp_authkit.oauth.callback import CallbackServer
from mcp_authkit.oauth.connector import authorize, create_oauth_client
from mcp_authkit.oauth.provider import AuthProvider
from mcp_authkit.oauth.store import CredentialStore

URL = "https://mcp.example.com/mcp"


@pytest.fixture
def provider(store: CredentialStore) -> AuthProvider:
    """Provider bound to a listener on an OS-assigned port."""
    return AuthProvider("example", URL, None, store, CallbackServer(port=0, timeout=5))


class TestCreateOAuthClient:
    """Tests for create_oauth_client."""

    def test_returns_httpx_auth(self, provider: AuthProvider) -> None:
        """Test that the engine is usable as httpx auth."""
        auth = create_oauth_client(provider, timeout=30)

        assert isinstance(auth, OAuthClientProvider)
        assert isinstance(auth, httpx.Auth)
        assert auth.context.server_url == URL
        assert auth.context.storage is provider
        assert auth.context.timeout == 30
        assert auth.context.redirect_handler == provider.redirect_handler
        assert auth.context.callback_handler == provider.callback_handler


class TestAuthorize:
    """Tests for the authorize helper."""

    @pytest.mark.asyncio
    async def test_starts_listener_and_initializes_session(self, provider: AuthProvider) -> None:
        """Test that an MCP session is opened with the OAuth engine attached."""
        seen: dict[str, object] = {}

        @asynccontextmanager
        async def fake_transport(url, auth=None, **kwargs):
            seen["url"] = url
            seen["auth"] = auth
            seen["redirect_uri"] = str(auth.context.client_metadata.redirect_uris[0])
            yield MagicMock(), MagicMock(), MagicMock()

        session = MagicMock()
        session.initialize = AsyncMock()
        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=session)
        session_cm.__aexit__ = AsyncMock(return_value=False)

        try:
            with patch("mcp_authkit.oauth.connector.streamablehttp_client", fake_transport), \
                    patch("mcp_authkit.oauth.connector.ClientSession", return_value=session_cm):
                await authorize(provider)

            assert provider.callback_server.is_running
            assert seen["url"] == URL
            assert isinstance(seen["auth"], OAuthClientProvider)
            assert seen["redirect_uri"] == provider.callback_server.redirect_uri
            session.initialize.assert_awaited_once()
        finally:
            await provider.callback_server.stop()

"""Wiring between AuthProvider and the MCP SDK OAuth engine.

The SDK's OAuthClientProvider is an ``httpx.Auth`` that performs
discovery, dynamic registration, the code exchange and token refresh.
This module plugs an AuthProvider into it and offers a helper that
forces an authorization by opening an MCP session.
"""

import logging
import os

from mcp import ClientSession
from mcp.client.auth import OAuthClientProvider
from mcp.client.streamable_http import streamablehttp_client

from .provider import AuthProvider

logger = logging.getLogger(__name__)

# Overall timeout for OAuth engine requests (configurable via env var)
OAUTH_TIMEOUT = float(os.environ.get("MCP_AUTHKIT_OAUTH_TIMEOUT", "300"))


def create_oauth_client(provider: AuthProvider, timeout: float = OAUTH_TIMEOUT) -> OAuthClientProvider:
    """Build an SDK OAuth client backed by an AuthProvider.

    The callback server must already be started so that the client
    metadata carries the final redirect URI.

    Args:
        provider: Provider for the server to authorize against
        timeout: Timeout for the engine's HTTP requests

    Returns:
        OAuthClientProvider usable as ``auth=`` on any httpx client
    """
    return OAuthClientProvider(
        server_url=provider.server_url,
        client_metadata=provider.client_metadata,
        storage=provider,
        redirect_handler=provider.redirect_handler,
        callback_handler=provider.callback_handler,
        timeout=timeout,
    )


async def authorize(provider: AuthProvider) -> None:
    """Authorize against a server by initializing an MCP session.

    Any 401 from the server makes the engine run the full flow through
    the provider; existing valid tokens make this a cheap round trip.
    """
    await provider.callback_server.start()
    auth = create_oauth_client(provider)

    logger.info(f"[{provider.server_name}] Connecting to {provider.server_url}")
    async with streamablehttp_client(provider.server_url, auth=auth) as (read, write, _):
        async with ClientSession(read, write) as session:
            await session.initialize()
    logger.info(f"[{provider.server_name}] Authorized")

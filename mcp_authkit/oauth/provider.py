"""Per-server OAuth provider.

AuthProvider adapts one configured MCP server (name + URL + optional
static client settings) to the capability set an OAuth engine consumes:
client metadata, client registration lookup/save, token lookup/save,
the authorization redirect, and PKCE verifier / state persistence.

It also implements the ``TokenStorage`` protocol and the redirect and
callback handlers of ``mcp.client.auth.OAuthClientProvider``, so the
MCP SDK can drive the authorization-code flow against it directly.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from urllib.parse import parse_qs, urlparse

from mcp.shared.auth import OAuthClientInformationFull, OAuthClientMetadata, OAuthToken

from .callback import CallbackServer
from .store import CredentialStore
from .tokens import StoredClientInfo, StoredTokens

logger = logging.getLogger(__name__)

# Client name sent during Dynamic Client Registration
CLIENT_NAME = "mcp-authkit"

RedirectCallback = Callable[[str], Awaitable[None] | None]


class OAuthSequenceError(Exception):
    """A flow value was requested before it was saved.

    Raised when the engine asks for the code verifier or state of a
    server before creating one. This is a programming-sequence error
    and is fatal to the current authorization attempt.
    """

    pass


@dataclass
class OAuthSettings:
    """Static OAuth settings for one server.

    Attributes:
        client_id: Pre-registered client ID; takes precedence over
            dynamic registration
        client_secret: Secret for the pre-registered client
        scope: Space-separated scopes to request
        on_redirect: Called with the authorization URL; responsible for
            opening it in a browser
    """

    client_id: str | None = None
    client_secret: str | None = None
    scope: str | None = None
    on_redirect: RedirectCallback | None = None


class AuthProvider:
    """OAuth provider for a single (server name, server URL) pair.

    Reads of tokens and client registrations are scoped to the server
    URL, so credentials saved for one endpoint are never offered to a
    different endpoint configured under the same name.
    """

    def __init__(
        self,
        server_name: str,
        server_url: str,
        settings: OAuthSettings | None,
        store: CredentialStore,
        callback_server: CallbackServer,
    ):
        """Initialize provider.

        Args:
            server_name: Logical server name (credential key)
            server_url: Server URL the credentials are pinned to
            settings: Optional static client settings
            store: Credential store for persistence
            callback_server: Shared loopback listener
        """
        self.server_name = server_name
        self.server_url = server_url
        self.settings = settings or OAuthSettings()
        self.store = store
        self.callback_server = callback_server

        self._tokens: StoredTokens | None = None
        self._pending_state: str | None = None
        self._pending_future: "asyncio.Future[str] | None" = None

    # Client metadata and registration

    @property
    def redirect_url(self) -> str:
        """Loopback redirect URI of the active callback listener."""
        return self.callback_server.redirect_uri

    def _auth_method(self, client_secret: str | None) -> str:
        return "client_secret_post" if client_secret else "none"

    @property
    def client_metadata(self) -> OAuthClientMetadata:
        """Client metadata used for Dynamic Client Registration."""
        data: dict[str, Any] = {
            "redirect_uris": [self.redirect_url],
            "client_name": CLIENT_NAME,
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "token_endpoint_auth_method": self._auth_method(self.settings.client_secret),
        }
        if self.settings.scope:
            data["scope"] = self.settings.scope
        return OAuthClientMetadata.model_validate(data)

    def _client_information(self, client: StoredClientInfo) -> OAuthClientInformationFull:
        data = self.client_metadata.model_dump(exclude_none=True)
        data.update(
            client_id=client.client_id,
            client_secret=client.client_secret,
            client_id_issued_at=client.client_id_issued_at,
            client_secret_expires_at=client.client_secret_expires_at,
            token_endpoint_auth_method=self._auth_method(client.client_secret),
        )
        return OAuthClientInformationFull.model_validate(data)

    async def client_information(self) -> OAuthClientInformationFull | None:
        """Get the client to authorize as.

        Statically configured credentials win over any stored dynamic
        registration. A stored registration whose secret has expired is
        reported as absent so the engine registers again.
        """
        if self.settings.client_id:
            return self._client_information(
                StoredClientInfo(
                    client_id=self.settings.client_id,
                    client_secret=self.settings.client_secret,
                )
            )

        entry = self.store.get_for_url(self.server_name, self.server_url)
        if entry is None or entry.client_info is None:
            return None

        if entry.client_info.is_secret_expired():
            logger.info(f"[{self.server_name}] Client secret expired, re-registration required")
            return None

        return self._client_information(entry.client_info)

    async def save_client_information(self, info: OAuthClientInformationFull) -> None:
        """Persist a dynamically registered client for this server URL."""
        self.store.update_client_info(
            self.server_name,
            StoredClientInfo.from_registration(info),
            self.server_url,
        )
        logger.info(f"[{self.server_name}] Saved dynamically registered client")

    # Tokens

    async def tokens(self) -> OAuthToken | None:
        """Get current tokens, preferring the in-memory copy.

        expires_in is recomputed from the stored absolute deadline.
        """
        if self._tokens is not None:
            return self._tokens.to_oauth_token()

        entry = self.store.get_for_url(self.server_name, self.server_url)
        if entry is None or entry.tokens is None:
            return None
        return entry.tokens.to_oauth_token()

    async def save_tokens(self, tokens: OAuthToken) -> None:
        """Persist tokens, converting expires_in to an absolute deadline."""
        stored = StoredTokens.from_oauth_token(tokens)
        self._tokens = stored
        self.store.update_tokens(self.server_name, stored, self.server_url)
        logger.info(f"[{self.server_name}] Saved tokens")

    def is_token_expired(self) -> bool:
        """Check the in-memory tokens; False when none or no expiry."""
        return self._tokens is not None and self._tokens.is_expired()

    # Redirect

    async def redirect_to_authorization(self, authorization_url: str) -> None:
        """Hand the authorization URL to the configured redirect callback."""
        logger.info(f"[{self.server_name}] Redirecting to authorization")
        logger.debug(f"[{self.server_name}] Authorization URL: {authorization_url}")
        if self.settings.on_redirect is None:
            return
        result = self.settings.on_redirect(authorization_url)
        if inspect.isawaitable(result):
            await result

    # PKCE verifier and state

    async def save_code_verifier(self, code_verifier: str) -> None:
        """Persist the PKCE code verifier for this server."""
        self.store.update_code_verifier(self.server_name, code_verifier)

    async def code_verifier(self) -> str:
        """Get the saved PKCE code verifier.

        Raises:
            OAuthSequenceError: If no verifier was saved
        """
        entry = self.store.get(self.server_name)
        if entry is None or not entry.code_verifier:
            raise OAuthSequenceError(f"No code verifier saved for MCP server: {self.server_name}")
        return entry.code_verifier

    async def save_state(self, state: str) -> None:
        """Persist the OAuth state parameter for this server."""
        self.store.update_oauth_state(self.server_name, state)

    async def state(self) -> str:
        """Get the saved OAuth state parameter.

        Raises:
            OAuthSequenceError: If no state was saved
        """
        oauth_state = self.store.get_oauth_state(self.server_name)
        if not oauth_state:
            raise OAuthSequenceError(f"No OAuth state saved for MCP server: {self.server_name}")
        return oauth_state

    # mcp.client.auth.TokenStorage protocol

    async def get_tokens(self) -> OAuthToken | None:
        return await self.tokens()

    async def set_tokens(self, tokens: OAuthToken) -> None:
        await self.save_tokens(tokens)

    async def get_client_info(self) -> OAuthClientInformationFull | None:
        return await self.client_information()

    async def set_client_info(self, client_info: OAuthClientInformationFull) -> None:
        await self.save_client_information(client_info)

    # mcp.client.auth.OAuthClientProvider handlers

    async def redirect_handler(self, authorization_url: str) -> None:
        """Register the callback wait, then redirect.

        The state is taken from the authorization URL built by the
        engine. The wait is registered before the browser opens so a fast
        redirect cannot arrive first.

        Raises:
            OAuthSequenceError: If the URL carries no state parameter
        """
        values = parse_qs(urlparse(authorization_url).query).get("state")
        if not values or not values[0]:
            raise OAuthSequenceError("Authorization URL has no state parameter")
        state = values[0]

        await self.save_state(state)
        self._pending_future = self.callback_server.wait_for_callback(state)
        self._pending_state = state
        try:
            await self.redirect_to_authorization(authorization_url)
        except Exception:
            self.cancel_authorization()
            raise

    async def callback_handler(self) -> tuple[str, str | None]:
        """Wait for the browser redirect of the current authorization.

        Returns:
            Authorization code and the state it was issued for

        Raises:
            OAuthSequenceError: If no authorization is in progress
            CallbackError: On timeout, cancellation or a remote error
        """
        state = self._pending_state
        future = self._pending_future
        if state is None or future is None:
            raise OAuthSequenceError(f"No authorization in progress for MCP server: {self.server_name}")

        try:
            code = await future
        finally:
            self._pending_state = None
            self._pending_future = None
            self.store.clear_oauth_state(self.server_name)
        return code, state

    def cancel_authorization(self) -> bool:
        """Abort the authorization in progress, if any."""
        state = self._pending_state
        if state is None:
            return False
        return self.callback_server.cancel_pending(state)

"""OAuth credential data structures.

This module provides the records persisted per MCP server:
- StoredTokens: access/refresh tokens with an absolute expiry
- StoredClientInfo: a dynamically registered client (RFC 7591)
- AuthEntry: everything kept for one server name

Timestamps follow the persisted file format: token expiry is epoch
milliseconds, client registration timestamps are epoch seconds.
"""

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from mcp.shared.auth import OAuthClientInformationFull, OAuthToken


def now_millis() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class ExpiryStatus(Enum):
    """Result of an expiry check against stored tokens."""

    UNKNOWN = "unknown"  # No tokens stored at all
    EXPIRED = "expired"
    VALID = "valid"


@dataclass
class StoredTokens:
    """OAuth tokens as persisted for one server.

    Attributes:
        access_token: The access token string
        refresh_token: Optional refresh token
        expires_at: Absolute expiry in epoch milliseconds; None never expires
        scope: Space-separated list of granted scopes
        token_type: Token type reported by the server (typically "Bearer")
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None
    scope: str | None = None
    token_type: str | None = None

    def is_expired(self, now_ms: int | None = None) -> bool:
        """Check if the access token is past its expiry.

        Tokens without expiry information are never considered expired;
        the server will answer 401 if they actually are.
        """
        if self.expires_at is None:
            return False
        current = now_millis() if now_ms is None else now_ms
        return current >= self.expires_at

    def expires_in(self, now_ms: int | None = None) -> int | None:
        """Whole seconds until expiry, clamped to zero.

        Returns:
            Seconds remaining, 0 if already expired, None if no expiry
        """
        if self.expires_at is None:
            return None
        current = now_millis() if now_ms is None else now_ms
        return max(0, math.floor((self.expires_at - current) / 1000))

    def has_refresh_token(self) -> bool:
        """Check if this token set has a refresh token."""
        return self.refresh_token is not None and len(self.refresh_token) > 0

    def to_oauth_token(self, now_ms: int | None = None) -> OAuthToken:
        """Convert to the wire format consumed by the OAuth engine."""
        return OAuthToken(
            access_token=self.access_token,
            token_type="Bearer",
            expires_in=self.expires_in(now_ms),
            refresh_token=self.refresh_token,
            scope=self.scope,
        )

    @classmethod
    def from_oauth_token(cls, token: OAuthToken, now_ms: int | None = None) -> "StoredTokens":
        """Create StoredTokens from an engine token response.

        The relative expires_in is turned into an absolute deadline at
        save time so it survives restarts.
        """
        current = now_millis() if now_ms is None else now_ms
        expires_at = None
        if token.expires_in is not None:
            expires_at = current + int(token.expires_in) * 1000

        return cls(
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_at=expires_at,
            scope=token.scope,
            token_type=token.token_type or "Bearer",
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted (camelCase) representation."""
        data: dict[str, Any] = {"accessToken": self.access_token}
        if self.refresh_token:
            data["refreshToken"] = self.refresh_token
        if self.expires_at is not None:
            data["expiresAt"] = self.expires_at
        if self.scope:
            data["scope"] = self.scope
        if self.token_type:
            data["tokenType"] = self.token_type
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoredTokens":
        """Deserialize from the persisted representation."""
        expires_at = data.get("expiresAt")
        return cls(
            access_token=data["accessToken"],
            refresh_token=data.get("refreshToken"),
            expires_at=int(expires_at) if expires_at is not None else None,
            scope=data.get("scope"),
            token_type=data.get("tokenType"),
        )


@dataclass
class StoredClientInfo:
    """Dynamically registered OAuth client credentials.

    Public clients may not have a client_secret.
    """

    client_id: str
    client_secret: str | None = None
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None

    def is_secret_expired(self, now: float | None = None) -> bool:
        """Check if the client secret is past its expiry.

        Per RFC 7591 a client_secret_expires_at of 0 means the secret
        does not expire.
        """
        if not self.client_secret_expires_at:
            return False
        current = time.time() if now is None else now
        return self.client_secret_expires_at < current

    @classmethod
    def from_registration(cls, info: OAuthClientInformationFull) -> "StoredClientInfo":
        """Create from a registration response."""
        return cls(
            client_id=info.client_id,
            client_secret=info.client_secret,
            client_id_issued_at=info.client_id_issued_at,
            client_secret_expires_at=info.client_secret_expires_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted representation."""
        data: dict[str, Any] = {"clientId": self.client_id}
        if self.client_secret:
            data["clientSecret"] = self.client_secret
        if self.client_id_issued_at is not None:
            data["clientIdIssuedAt"] = self.client_id_issued_at
        if self.client_secret_expires_at is not None:
            data["clientSecretExpiresAt"] = self.client_secret_expires_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoredClientInfo":
        """Deserialize from the persisted representation."""
        return cls(
            client_id=data["clientId"],
            client_secret=data.get("clientSecret"),
            client_id_issued_at=data.get("clientIdIssuedAt"),
            client_secret_expires_at=data.get("clientSecretExpiresAt"),
        )


@dataclass
class AuthEntry:
    """Everything persisted for one server name.

    server_url pins the entry to one remote endpoint; lookups for a
    different URL must treat the entry as absent.
    """

    tokens: StoredTokens | None = None
    client_info: StoredClientInfo | None = None
    code_verifier: str | None = None
    oauth_state: str | None = None
    server_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted representation."""
        data: dict[str, Any] = {}
        if self.tokens is not None:
            data["tokens"] = self.tokens.to_dict()
        if self.client_info is not None:
            data["clientInfo"] = self.client_info.to_dict()
        if self.code_verifier is not None:
            data["codeVerifier"] = self.code_verifier
        if self.oauth_state is not None:
            data["oauthState"] = self.oauth_state
        if self.server_url is not None:
            data["serverUrl"] = self.server_url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthEntry":
        """Deserialize from the persisted representation.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed
        """
        tokens_data = data.get("tokens")
        client_data = data.get("clientInfo")
        return cls(
            tokens=StoredTokens.from_dict(tokens_data) if tokens_data else None,
            client_info=StoredClientInfo.from_dict(client_data) if client_data else None,
            code_verifier=data.get("codeVerifier"),
            oauth_state=data.get("oauthState"),
            server_url=data.get("serverUrl"),
        )

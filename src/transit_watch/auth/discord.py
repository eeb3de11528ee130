"""Discord OAuth authentication.

Implements the server side of the OAuth 2.0 authorization code flow with
PKCE for Discord sign-in. The browser generates the PKCE verifier, sends the
user to Discord's consent screen, and hands the resulting code back to us
together with the verifier and the redirect URI it used.

## OAuth Endpoints

- Authorization: https://discord.com/oauth2/authorize
- Token: https://discord.com/api/oauth2/token
- User Info: https://discord.com/api/users/@me
- Avatars: https://cdn.discordapp.com/avatars/{user_id}/{avatar}.png

## Scopes Used

- identify: Get the user's id, username and avatar
- email: Get the user's email (the join key for local users)

## Retries

None. Authorization codes are single-use, so a failed exchange can never
succeed with the same code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from authlib.common.security import generate_token
from authlib.common.urls import add_params_to_uri
from authlib.oauth2.rfc7636 import create_s256_code_challenge

from transit_watch.auth.errors import IncompleteIdentity, ProviderRejected

if TYPE_CHECKING:
    from transit_watch.config import Settings

logger = logging.getLogger(__name__)

DISCORD_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
DISCORD_API_BASE_URL = "https://discord.com/api"
DISCORD_CDN_BASE_URL = "https://cdn.discordapp.com"

PKCE_VERIFIER_LENGTH = 64


@dataclass
class DiscordTokens:
    """Access token returned by the token endpoint.

    Used once to fetch the profile, then discarded. Never persisted.
    """

    access_token: str
    token_type: str
    scope: str

    def __repr__(self) -> str:
        return f"DiscordTokens(token_type={self.token_type!r}, scope={self.scope!r})"


@dataclass
class DiscordIdentity:
    """Normalized Discord profile."""

    external_id: str
    username: str | None
    email: str
    avatar_ref: str | None


def generate_code_verifier(length: int = PKCE_VERIFIER_LENGTH) -> str:
    """Generate a random PKCE code verifier (43-128 unreserved chars)."""
    if not 43 <= length <= 128:
        raise ValueError("PKCE verifier length must be between 43 and 128")
    return generate_token(length)


def create_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for a verifier."""
    return create_s256_code_challenge(code_verifier)


class DiscordOAuth:
    """Discord OAuth 2.0 client.

    Example:
        ```python
        oauth = DiscordOAuth.from_settings(settings)

        tokens = await oauth.exchange_code(code, code_verifier, redirect_uri)
        identity = await oauth.get_user_info(tokens.access_token)
        ```
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_base_url: str = DISCORD_API_BASE_URL,
        cdn_base_url: str = DISCORD_CDN_BASE_URL,
        scopes: list[str] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Discord OAuth client.

        Args:
            client_id: Discord application client ID
            client_secret: Discord application client secret
            api_base_url: Discord API root
            cdn_base_url: Discord CDN root, used to build avatar URLs
            scopes: OAuth scopes to request
            timeout: Timeout in seconds for each outbound call
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base_url = api_base_url.rstrip("/")
        self.cdn_base_url = cdn_base_url.rstrip("/")
        self.scopes = scopes or ["identify", "email"]
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> DiscordOAuth:
        return cls(
            client_id=settings.discord_client_id,
            client_secret=settings.discord_client_secret,
            api_base_url=settings.discord_api_base_url,
            cdn_base_url=settings.discord_cdn_base_url,
            scopes=settings.discord_scopes,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    @property
    def token_url(self) -> str:
        return f"{self.api_base_url}/oauth2/token"

    @property
    def userinfo_url(self) -> str:
        return f"{self.api_base_url}/users/@me"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def get_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_challenge: str,
        prompt: str | None = None,
    ) -> str:
        """Generate the Discord consent URL for a PKCE flow.

        Args:
            redirect_uri: Callback URL registered with Discord
            state: Random state parameter for CSRF protection
            code_challenge: S256 challenge derived from the client's verifier
            prompt: Optional Discord prompt, e.g. "consent" to always show the consent screen

        Returns:
            URL to redirect the user to
        """
        params = [
            ("client_id", self.client_id),
            ("redirect_uri", redirect_uri),
            ("response_type", "code"),
            ("scope", " ".join(self.scopes)),
            ("state", state),
            ("code_challenge", code_challenge),
            ("code_challenge_method", "S256"),
        ]
        if prompt:
            params.append(("prompt", prompt))
        return add_params_to_uri(DISCORD_AUTHORIZE_URL, params)

    def avatar_url(self, identity: DiscordIdentity) -> str | None:
        """Build the CDN URL for a user's avatar, or None if they have none."""
        if not identity.avatar_ref:
            return None
        return f"{self.cdn_base_url}/avatars/{identity.external_id}/{identity.avatar_ref}.png"

    async def exchange_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> DiscordTokens:
        """Exchange an authorization code for an access token.

        Args:
            code: Authorization code from the callback
            code_verifier: PKCE verifier matching the challenge sent to Discord
            redirect_uri: Must equal the URI the code was issued for

        Returns:
            DiscordTokens with the bearer access token

        Raises:
            ProviderRejected: If Discord declines the exchange or is unreachable
        """
        logger.debug(
            "Exchanging authorization code (code_len=%d, verifier_len=%d, redirect_uri=%s)",
            len(code),
            len(code_verifier),
            redirect_uri,
        )

        try:
            async with self._client() as client:
                response = await client.post(
                    self.token_url,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                        "grant_type": "authorization_code",
                        "redirect_uri": redirect_uri,
                        "code_verifier": code_verifier,
                    },
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"Token exchange request failed: {type(e).__name__}")
            raise ProviderRejected(
                f"Could not reach Discord token endpoint: {type(e).__name__}",
                error="provider_unreachable",
            ) from e

        if not response.is_success:
            raise self._token_error(response)

        data = _json_body(response)
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ProviderRejected(
                "Token response did not contain an access token",
                error="invalid_token_response",
                status_code=response.status_code,
            )

        tokens = DiscordTokens(
            access_token=data["access_token"],
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )
        logger.debug(f"Token exchange succeeded (token_type={tokens.token_type}, scope={tokens.scope})")
        return tokens

    async def get_user_info(self, access_token: str) -> DiscordIdentity:
        """Get the profile of the user who owns the access token.

        Args:
            access_token: Valid bearer token

        Returns:
            DiscordIdentity with user details

        Raises:
            ProviderRejected: If the request fails
            IncompleteIdentity: If the profile has no id or no email
        """
        try:
            async with self._client() as client:
                response = await client.get(
                    self.userinfo_url,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"User info request failed: {type(e).__name__}")
            raise ProviderRejected(
                f"Could not reach Discord profile endpoint: {type(e).__name__}",
                error="provider_unreachable",
            ) from e

        if not response.is_success:
            data = _json_body(response)
            message = None
            if isinstance(data, dict):
                message = data.get("message")
            logger.error(f"User info request failed: {response.status_code}")
            raise ProviderRejected(
                message or f"User info request failed: {response.status_code}",
                error="profile_request_failed",
                status_code=response.status_code,
            )

        data = _json_body(response)
        if not isinstance(data, dict):
            raise ProviderRejected(
                "Profile response was not a JSON object",
                error="invalid_profile_response",
                status_code=response.status_code,
            )

        if not data.get("id"):
            raise IncompleteIdentity("Discord profile has no user id", missing="id")

        if not data.get("email"):
            logger.warning(f"Discord profile {data['id']} has no email")
            raise IncompleteIdentity(
                "Discord profile has no email address; grant the 'email' scope",
                missing="email",
            )

        return DiscordIdentity(
            external_id=str(data["id"]),
            username=data.get("username"),
            email=data["email"],
            avatar_ref=data.get("avatar"),
        )

    @staticmethod
    def _token_error(response: httpx.Response) -> ProviderRejected:
        """Build a ProviderRejected from a failed token response.

        Discord answers with `{"error": ..., "error_description": ...}`; the
        description is kept verbatim.
        """
        data = _json_body(response)
        error = None
        description = None
        if isinstance(data, dict):
            error = data.get("error")
            description = data.get("error_description") or error

        if description is None:
            description = f"Token exchange failed: {response.status_code} {response.text}".strip()

        logger.error(f"Token exchange rejected: status={response.status_code} error={error}")
        return ProviderRejected(description, error=error, status_code=response.status_code)


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None

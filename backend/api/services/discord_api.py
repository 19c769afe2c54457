"""Discord OAuth2 API client service"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx

from shared.models.credential import Credential

logger = logging.getLogger(__name__)


@dataclass
class TokenExchangeResult:
    """Result of an authorization-code exchange."""

    success: bool
    credential: Credential | None = None
    error: str | None = None


class DiscordAPIClient:
    """Client for Discord's OAuth2 and user endpoints"""

    # identify: profile snapshot, guilds: dashboard listing, guilds.join: member adds
    OAUTH_SCOPES = [
        "identify",
        "guilds",
        "guilds.join",
    ]

    DISCORD_API_URL = "https://discord.com/api/v10"
    DISCORD_OAUTH_URL = "https://discord.com/api/oauth2"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http: httpx.AsyncClient | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

        # Shared HTTP client, reuses TCP connections across requests
        self._http = http or httpx.AsyncClient(timeout=10.0)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on app shutdown."""
        await self._http.aclose()

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def generate_oauth_url(self, state: str | None = None) -> str:
        """Generate Discord OAuth authorization URL"""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.OAUTH_SCOPES),
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"https://discord.com/oauth2/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenExchangeResult:
        """Exchange an authorization code and build the user's Credential."""
        try:
            token_response = await self._http.post(
                f"{self.DISCORD_OAUTH_URL}/token",
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                auth=(self.client_id, self.client_secret),
            )

            if token_response.status_code != 200:
                logger.error(
                    f"Token exchange failed: {token_response.status_code} "
                    f"{token_response.text} (redirect_uri={self.redirect_uri})"
                )
                return TokenExchangeResult(False, error="token_exchange_failed")

            token_data = token_response.json()
            access_token = token_data.get("access_token")
            if not access_token:
                logger.error("No access_token in response")
                return TokenExchangeResult(False, error="no_access_token")

            user_info = await self.get_current_user(access_token)
            if not user_info:
                return TokenExchangeResult(False, error="user_fetch_failed")

            expires_in = int(token_data.get("expires_in", 0))
            credential = Credential(
                user_id=str(user_info["id"]),
                username=user_info.get("username", ""),
                discriminator=user_info.get("discriminator") or "0",
                avatar=user_info.get("avatar"),
                is_bot=bool(user_info.get("bot", False)),
                access_token=access_token,
                refresh_token=token_data.get("refresh_token"),
                scopes=token_data.get("scope", ""),
                expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
            )
            logger.debug(f"Token exchanged for Discord user: {credential.user_id}")
            return TokenExchangeResult(True, credential=credential)

        except httpx.TimeoutException:
            logger.error("Timeout while exchanging code for token")
            return TokenExchangeResult(False, error="timeout")
        except httpx.HTTPError as e:
            logger.exception(f"HTTP error exchanging code: {e}")
            return TokenExchangeResult(False, error="exchange_failed")

    async def get_current_user(self, access_token: str) -> dict | None:
        """Get the token owner's user object"""
        try:
            response = await self._http.get(
                f"{self.DISCORD_API_URL}/users/@me",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Error getting user info: {type(e).__name__}: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"Failed to get user info: {response.status_code}")
            return None
        data: dict = response.json()
        return data

    async def get_user_guilds(self, access_token: str) -> list[dict] | None:
        """List the guilds the token owner belongs to"""
        try:
            response = await self._http.get(
                f"{self.DISCORD_API_URL}/users/@me/guilds",
                params={"with_counts": "true"},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Error fetching guilds: {type(e).__name__}: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"Failed to fetch guilds: {response.status_code} {response.text}")
            return None
        data: list[dict] = response.json()
        return data

    @staticmethod
    def get_avatar_url(user_id: str, avatar_hash: str | None) -> str:
        """Generate Discord avatar CDN URL"""
        if avatar_hash:
            ext = "gif" if avatar_hash.startswith("a_") else "png"
            return f"https://cdn.discordapp.com/avatars/{user_id}/{avatar_hash}.{ext}"
        default_avatar_index = (int(user_id) >> 22) % 6
        return f"https://cdn.discordapp.com/embed/avatars/{default_avatar_index}.png"

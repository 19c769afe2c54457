"""Guild membership gateway.

Membership questions are answered from the bot's live guild cache; adding a
user goes through Discord's ``PUT /guilds/{guild}/members/{user}`` endpoint
with the user's ``guilds.join`` access token.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

import discord
import httpx

logger = logging.getLogger(__name__)

DISCORD_API_URL = "https://discord.com/api/v10"

TOKEN_EXPIRED = "token expired"
BOT_NOT_IN_GUILD = "Bot not in target server"
RATE_LIMITED = "Rate limited"

# Discord JSON error codes seen on the add-member route
ERROR_REASONS: dict[int, str] = {
    10004: BOT_NOT_IN_GUILD,
    10013: "Unknown user",
    30001: "User has reached the maximum number of servers",
    40007: "User is banned from the target server",
    50007: "Cannot send messages to this user",
    50013: "Missing permissions",
    50025: "Invalid OAuth2 access token",
}


class AddMemberOutcome(StrEnum):
    ADDED = "added"
    ALREADY_MEMBER = "already_member"
    FAILED = "failed"


@dataclass
class AddMemberResult:
    """Result of a single add-member attempt."""

    outcome: AddMemberOutcome
    reason: str | None = None

    @classmethod
    def added(cls) -> AddMemberResult:
        return cls(AddMemberOutcome.ADDED)

    @classmethod
    def already_member(cls) -> AddMemberResult:
        return cls(AddMemberOutcome.ALREADY_MEMBER, "Already in server")

    @classmethod
    def failed(cls, reason: str) -> AddMemberResult:
        return cls(AddMemberOutcome.FAILED, reason)


@dataclass
class GuildInfo:
    id: str
    name: str
    icon: str | None
    approx_member_count: int


class DiscordGuildGateway:
    """Answers bot-membership questions and adds authorized users to guilds."""

    MAX_RETRY_AFTER = 10.0

    def __init__(
        self,
        client: discord.Client,
        bot_token: str,
        *,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.bot_token = bot_token
        self._http = http or httpx.AsyncClient(base_url=DISCORD_API_URL, timeout=10.0)
        self._clock = clock or (lambda: datetime.now(UTC))

    async def close(self) -> None:
        """Close the shared HTTP client. Call on app shutdown."""
        await self._http.aclose()

    def _guild(self, guild_id: str) -> discord.Guild | None:
        try:
            return self.client.get_guild(int(guild_id))
        except (TypeError, ValueError):
            return None

    # ==================== Membership ====================

    def is_bot_member(self, guild_id: str) -> bool:
        return self._guild(guild_id) is not None

    def guild_info(self, guild_id: str) -> GuildInfo | None:
        guild = self._guild(guild_id)
        if guild is None:
            return None
        return GuildInfo(
            id=str(guild.id),
            name=guild.name,
            icon=guild.icon.key if guild.icon else None,
            approx_member_count=guild.member_count or 0,
        )

    # ==================== Add member ====================

    async def add_member(
        self,
        guild_id: str,
        user_id: str,
        access_token: str,
        *,
        expires_at: datetime | None = None,
    ) -> AddMemberResult:
        """Add a user to a guild with their OAuth token.

        Calling this for a user already in the guild yields ``ALREADY_MEMBER``.
        Provider rejections and transport errors are returned as ``FAILED``.
        """
        if expires_at is not None and expires_at <= self._clock():
            return AddMemberResult.failed(TOKEN_EXPIRED)

        guild = self._guild(guild_id)
        if guild is None:
            return AddMemberResult.failed(BOT_NOT_IN_GUILD)

        if guild.get_member(int(user_id)) is not None:
            return AddMemberResult.already_member()

        retried = False
        while True:
            try:
                response = await self._http.put(
                    f"/guilds/{guild_id}/members/{user_id}",
                    json={"access_token": access_token},
                    headers={"Authorization": f"Bot {self.bot_token}"},
                )
            except httpx.HTTPError as e:
                logger.warning(f"Add member {user_id} to {guild_id} failed: {type(e).__name__}: {e}")
                return AddMemberResult.failed(f"Request failed: {type(e).__name__}")

            if response.status_code in (200, 201):
                return AddMemberResult.added()
            if response.status_code == 204:
                return AddMemberResult.already_member()

            if response.status_code == 429:
                if retried:
                    logger.warning(f"Rate limited again adding {user_id} to {guild_id}, giving up")
                    return AddMemberResult.failed(RATE_LIMITED)
                retried = True
                retry_after = min(self._retry_after(response), self.MAX_RETRY_AFTER)
                logger.warning(f"Rate limited adding {user_id}, retrying in {retry_after:.2f}s")
                await asyncio.sleep(retry_after)
                continue

            reason = self._error_reason(response)
            logger.warning(
                f"Discord rejected adding {user_id} to {guild_id}: "
                f"{response.status_code} {reason}"
            )
            return AddMemberResult.failed(reason)

    @staticmethod
    def _payload(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _retry_after(self, response: httpx.Response) -> float:
        try:
            return float(self._payload(response).get("retry_after", 1.0))
        except (TypeError, ValueError):
            return 1.0

    def _error_reason(self, response: httpx.Response) -> str:
        payload = self._payload(response)
        code = payload.get("code")
        if code in ERROR_REASONS:
            return ERROR_REASONS[code]
        return payload.get("message") or f"HTTP {response.status_code}"

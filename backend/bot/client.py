"""Transfer bot client: slash commands and the guild cache the gateway reads"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from api.core.config import Settings
from bot.config import get_activity, get_status

if TYPE_CHECKING:
    from api.services import DiscordAPIClient
    from shared.services import TransferService

logger = logging.getLogger(__name__)


class TransferBot(commands.Bot):
    """Bot identity that must be present in both guilds of a transfer."""

    initial_extensions = ["bot.cogs.transfer"]

    def __init__(self, settings: Settings):
        # Guild and member caches come from the default intents; no message content needed
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
        )

        self.settings = settings
        self.transfer_service: TransferService | None = None
        self.discord_api: DiscordAPIClient | None = None

    async def setup_hook(self) -> None:
        loaded = []
        failed = []

        for extension in self.initial_extensions:
            try:
                await self.load_extension(extension)
                loaded.append(extension.split(".")[-1])
            except Exception as e:
                failed.append(f"{extension.split('.')[-1]} ({e})")

        if loaded:
            logger.info(f"[green]Loaded cogs:[/green] {', '.join(loaded)}")
        if failed:
            logger.error(f"[red]Failed to load:[/red] {', '.join(failed)}")

        guild_id = self.settings.discord_guild_id
        if guild_id:
            # Guild sync is immediate; global sync can take up to an hour
            guild = discord.Object(id=int(guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info(f"[magenta]Synced slash commands to guild {guild_id}[/magenta]")
        else:
            await self.tree.sync()
            logger.info("[magenta]Synced slash commands globally[/magenta]")

    async def on_ready(self) -> None:
        status = get_status(self.settings)
        activity = get_activity(self.settings)
        await self.change_presence(status=status, activity=activity)

        logger.info(f"[bold green]Bot ready:[/bold green] {self.user} [dim](ID: {self.user.id})[/dim]")
        logger.info(
            f"[cyan]Connected:[/cyan] {len(self.guilds)} guilds | discord.py {discord.__version__}"
        )
        logger.info(f"[cyan]Presence:[/cyan] {status.name} | {activity.name if activity else 'none'}")

"""Transfer slash commands: /authorize and /server"""

from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from shared.models import Credential, OutcomeKind, TransferRecord
from shared.services import TransferPreconditionError

logger = logging.getLogger(__name__)

MAX_REASON_LINES = 10


def format_transfer_summary(record: TransferRecord) -> str:
    """Render a finished transfer as a single chat message."""
    lines = [
        f"**Transfer to {record.target_guild_name or record.target_guild_id}: {record.status}**",
        f"Added: {record.success_count} | Skipped: {record.skipped_count} "
        f"| Failed: {record.failed_count} (of {record.total})",
    ]

    if record.error_message:
        lines.append(f"Error: {record.error_message}")

    failures = [r for r in record.results if r.status == OutcomeKind.FAILED]
    if failures:
        lines.append("")
        lines.append("Failures:")
        for outcome in failures[:MAX_REASON_LINES]:
            lines.append(f"- {outcome.username}: {outcome.reason or 'unknown error'}")
        if len(failures) > MAX_REASON_LINES:
            lines.append(f"...and {len(failures) - MAX_REASON_LINES} more")

    return "\n".join(lines)


async def send_result(interaction: discord.Interaction, content: str) -> None:
    """Reply through the interaction, falling back to the channel, then a DM.

    Interaction tokens expire after 15 minutes, so long runs can outlive them.
    """
    try:
        await interaction.followup.send(content)
        return
    except discord.HTTPException as e:
        logger.warning(f"Interaction follow-up failed ({e.status}), falling back")

    mention = f"{interaction.user.mention} "
    if interaction.channel is not None:
        try:
            await interaction.channel.send(mention + content)
            return
        except discord.HTTPException as e:
            logger.warning(f"Channel fallback failed ({e.status}), sending DM")

    try:
        await interaction.user.send(content)
    except discord.HTTPException as e:
        logger.error(f"Could not deliver transfer result to {interaction.user}: {e}")


class Transfer(commands.Cog):
    def __init__(self, bot: commands.Bot):
        self.bot = bot

    def _is_excluded(self, credential: Credential) -> bool:
        return credential.is_bot or (
            self.bot.user is not None and credential.user_id == str(self.bot.user.id)
        )

    @app_commands.command(name="authorize", description="Get the link to authorize member transfers")
    async def authorize(self, interaction: discord.Interaction):
        discord_api = getattr(self.bot, "discord_api", None)
        if discord_api is None or not discord_api.is_configured:
            await interaction.response.send_message(
                "Authorization is not available right now.", ephemeral=True
            )
            return

        await interaction.response.send_message(
            f"Authorize here so you can be moved between servers:\n{discord_api.generate_oauth_url()}",
            ephemeral=True,
        )

    @app_commands.command(name="server", description="Move authorized members into another server")
    @app_commands.describe(target_id="ID of the server to move members into")
    async def server(self, interaction: discord.Interaction, target_id: str):
        guild = interaction.guild
        if guild is None:
            await interaction.response.send_message(
                "This command can only be used in a server.", ephemeral=True
            )
            return

        service = getattr(self.bot, "transfer_service", None)
        if service is None:
            await interaction.response.send_message(
                "Transfers are not available right now.", ephemeral=True
            )
            return

        target_id = target_id.strip()
        try:
            record = await service.create_transfer(str(interaction.user.id), str(guild.id), target_id)
        except TransferPreconditionError as e:
            await interaction.response.send_message(e.message, ephemeral=True)
            return

        await interaction.response.defer(thinking=True)
        logger.info(
            f"[/server] {interaction.user} started transfer {record.id}: {guild.id} -> {target_id}"
        )

        finished = await service.execute(record, exclude=self._is_excluded)
        if finished is None:
            await send_result(interaction, f"Transfer {record.id} could not be completed.")
            return

        await send_result(interaction, format_transfer_summary(finished))


async def setup(bot: commands.Bot):
    await bot.add_cog(Transfer(bot))

"""Discord bot presence configuration"""

import logging

import discord

from api.core.config import Settings

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "online": discord.Status.online,
    "idle": discord.Status.idle,
    "dnd": discord.Status.dnd,
    "invisible": discord.Status.invisible,
}

ACTIVITY_MAP = {
    "playing": discord.ActivityType.playing,
    "listening": discord.ActivityType.listening,
    "watching": discord.ActivityType.watching,
    "competing": discord.ActivityType.competing,
}


def get_status(settings: Settings) -> discord.Status:
    return STATUS_MAP.get(settings.discord_status.lower(), discord.Status.online)


def get_activity(settings: Settings) -> discord.Activity | discord.Streaming | None:
    """Build the bot activity from settings.

    Supports: playing, listening, watching, competing, streaming
    For streaming: DISCORD_ACTIVITY_URL must be a valid Twitch URL
    """
    name = settings.discord_activity_name
    if not name:
        return None

    activity_type = settings.discord_activity_type.lower()

    if activity_type == "streaming":
        url = settings.discord_activity_url
        if not url.startswith("https://twitch.tv/"):
            logger.warning(
                f"Streaming activity requires a Twitch DISCORD_ACTIVITY_URL, got: {url!r}. "
                "Falling back to 'playing' activity."
            )
            return discord.Activity(type=discord.ActivityType.playing, name=name)
        return discord.Streaming(name=name, url=url)

    return discord.Activity(
        type=ACTIVITY_MAP.get(activity_type, discord.ActivityType.playing), name=name
    )

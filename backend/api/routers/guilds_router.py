"""Guild listing for the dashboard: the caller's guilds with bot presence."""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from api.core.dependencies import (
    get_credential_repository,
    get_current_user_id,
    get_discord_api,
    get_gateway,
)
from api.services import DiscordAPIClient
from shared.repositories import CredentialRepository
from shared.services import DiscordGuildGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["guilds"])


class GuildResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    icon: str | None = None
    member_count: int
    bot_present: bool


@router.get("/guilds", response_model=list[GuildResponse])
async def list_guilds(
    user_id: str = Depends(get_current_user_id),
    repo: CredentialRepository = Depends(get_credential_repository),
    discord_api: DiscordAPIClient = Depends(get_discord_api),
    gateway: DiscordGuildGateway = Depends(get_gateway),
) -> list[GuildResponse]:
    """List the caller's guilds, annotated with whether the bot is present."""
    credential = await repo.get(user_id)
    if credential is None:
        raise HTTPException(status_code=401, detail="Not authorized")

    if credential.is_expired(datetime.now(UTC)):
        logger.warning(f"[Guilds] Token expired for user {user_id}")
        raise HTTPException(status_code=401, detail="Token expired. Please re-authorize.")

    guilds = await discord_api.get_user_guilds(credential.access_token)
    if guilds is None:
        raise HTTPException(status_code=400, detail="Failed to fetch guilds")

    response = []
    for guild in guilds:
        info = gateway.guild_info(str(guild["id"]))
        response.append(
            GuildResponse(
                id=str(guild["id"]),
                name=guild.get("name", ""),
                icon=guild.get("icon"),
                member_count=(
                    info.approx_member_count if info else guild.get("approximate_member_count", 0)
                ),
                bot_present=info is not None,
            )
        )
    return response

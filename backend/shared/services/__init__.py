"""Transfer domain services shared by the API and the bot."""

from .gateway import AddMemberOutcome, AddMemberResult, DiscordGuildGateway, GuildInfo
from .orchestrator import TransferOrchestrator
from .status import progress_from_record
from .transfer import TransferPreconditionError, TransferService

__all__ = [
    "AddMemberOutcome",
    "AddMemberResult",
    "DiscordGuildGateway",
    "GuildInfo",
    "TransferOrchestrator",
    "TransferPreconditionError",
    "TransferService",
    "progress_from_record",
]

"""Transfer service: precondition checks and run dispatch for both trigger surfaces."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from shared.models.credential import Credential
from shared.models.transfer import TransferRecord

from .gateway import GuildInfo
from .orchestrator import TransferOrchestrator

logger = logging.getLogger(__name__)


class TransferPreconditionError(Exception):
    """A transfer request rejected before any record was created."""

    NOT_AUTHORIZED = "not_authorized"
    TOKEN_EXPIRED = "token_expired"
    SAME_GUILD = "same_guild"
    BOT_MISSING = "bot_missing"

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def is_auth_error(self) -> bool:
        return self.code in (self.NOT_AUTHORIZED, self.TOKEN_EXPIRED)


class CredentialLookup(Protocol):
    async def get(self, user_id: str) -> Credential | None: ...


class TransferCreator(Protocol):
    async def create(
        self,
        initiator_id: str,
        source_guild_id: str,
        source_guild_name: str,
        target_guild_id: str,
        target_guild_name: str,
    ) -> TransferRecord: ...


class GuildLookup(Protocol):
    def guild_info(self, guild_id: str) -> GuildInfo | None: ...


class TransferService:
    """Validates transfer requests, creates records and launches orchestrator runs."""

    def __init__(
        self,
        credentials: CredentialLookup,
        transfers: TransferCreator,
        guilds: GuildLookup,
        orchestrator: TransferOrchestrator,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.credentials = credentials
        self.transfers = transfers
        self.guilds = guilds
        self.orchestrator = orchestrator
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_runs(self) -> int:
        return len(self._tasks)

    async def create_transfer(
        self, initiator_id: str, source_guild_id: str, target_guild_id: str
    ) -> TransferRecord:
        """Check preconditions and create a ``pending`` record.

        Raises TransferPreconditionError without touching the transfer store
        when the request cannot proceed.
        """
        credential = await self.credentials.get(initiator_id)
        if credential is None:
            raise TransferPreconditionError(
                TransferPreconditionError.NOT_AUTHORIZED,
                "You need to authorize the bot first.",
            )
        if credential.is_expired(self._clock()):
            raise TransferPreconditionError(
                TransferPreconditionError.TOKEN_EXPIRED,
                "Token expired. Please re-authorize.",
            )
        if source_guild_id == target_guild_id:
            raise TransferPreconditionError(
                TransferPreconditionError.SAME_GUILD,
                "Source and target servers cannot be the same.",
            )

        source = self.guilds.guild_info(source_guild_id)
        target = self.guilds.guild_info(target_guild_id)
        if source is None or target is None:
            raise TransferPreconditionError(
                TransferPreconditionError.BOT_MISSING,
                "Bot must be in both servers.",
            )

        record = await self.transfers.create(
            initiator_id=initiator_id,
            source_guild_id=source.id,
            source_guild_name=source.name,
            target_guild_id=target.id,
            target_guild_name=target.name,
        )
        logger.info(
            f"[Transfer {record.id}] Created by {initiator_id}: "
            f"{source.name} ({source.id}) -> {target.name} ({target.id})"
        )
        return record

    async def start(
        self, initiator_id: str, source_guild_id: str, target_guild_id: str
    ) -> TransferRecord:
        """Create a record and run it in the background without waiting."""
        record = await self.create_transfer(initiator_id, source_guild_id, target_guild_id)
        task = asyncio.create_task(
            self._run_guarded(record.id, record.target_guild_id),
            name=f"transfer-{record.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return record

    async def run(
        self,
        initiator_id: str,
        source_guild_id: str,
        target_guild_id: str,
        *,
        exclude: Callable[[Credential], bool] | None = None,
    ) -> TransferRecord | None:
        """Create a record and await the full run (chat command surface)."""
        record = await self.create_transfer(initiator_id, source_guild_id, target_guild_id)
        return await self.execute(record, exclude=exclude)

    async def execute(
        self,
        record: TransferRecord,
        *,
        exclude: Callable[[Credential], bool] | None = None,
    ) -> TransferRecord | None:
        """Await the run of an already created record."""
        return await self._run_guarded(record.id, record.target_guild_id, exclude=exclude)

    async def _run_guarded(
        self,
        transfer_id: str,
        target_guild_id: str,
        *,
        exclude: Callable[[Credential], bool] | None = None,
    ) -> TransferRecord | None:
        try:
            return await self.orchestrator.run(transfer_id, target_guild_id, exclude=exclude)
        except asyncio.CancelledError:
            logger.warning(f"[Transfer {transfer_id}] Cancelled, record left as last checkpointed")
            raise
        except Exception as e:
            logger.exception(f"[Transfer {transfer_id}] Background error: {e}")
            return None

    async def shutdown(self) -> None:
        """Cancel outstanding background runs."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} running transfer(s)")

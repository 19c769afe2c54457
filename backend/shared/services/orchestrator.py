"""Transfer orchestrator: drives one batch job to completion.

State machine: ``pending -> in_progress -> completed | failed``.

The orchestrator takes one snapshot of the credential store, then adds each
user to the target guild in snapshot order. After every member the full
record (counters + ordered result log) is written back so pollers see a
growing prefix of the final log. A single member's rejection never aborts
the batch; any exception from the stores or the gateway does, leaving the
record ``failed`` with the progress checkpointed so far.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from shared.models.credential import Credential
from shared.models.transfer import MemberOutcome, OutcomeKind, TransferRecord, TransferStatus

from .gateway import TOKEN_EXPIRED, AddMemberOutcome, AddMemberResult

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 1.0


class CredentialStore(Protocol):
    async def list_all(self) -> list[Credential]: ...


class TransferStore(Protocol):
    async def update(self, transfer_id: str, **fields: Any) -> TransferRecord | None: ...


class MembershipGateway(Protocol):
    async def add_member(
        self,
        guild_id: str,
        user_id: str,
        access_token: str,
        *,
        expires_at: datetime | None = None,
    ) -> AddMemberResult: ...


_KIND_BY_OUTCOME = {
    AddMemberOutcome.ADDED: OutcomeKind.SUCCESS,
    AddMemberOutcome.ALREADY_MEMBER: OutcomeKind.SKIPPED,
    AddMemberOutcome.FAILED: OutcomeKind.FAILED,
}

_COUNTER_BY_KIND = {
    OutcomeKind.SUCCESS: "success_count",
    OutcomeKind.SKIPPED: "skipped_count",
    OutcomeKind.FAILED: "failed_count",
}


class TransferNotFoundError(LookupError):
    pass


class TransferOrchestrator:
    """Runs transfer batch jobs against injected stores and gateway."""

    def __init__(
        self,
        credentials: CredentialStore,
        transfers: TransferStore,
        gateway: MembershipGateway,
        *,
        delay: float = DEFAULT_DELAY_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.credentials = credentials
        self.transfers = transfers
        self.gateway = gateway
        self.delay = delay
        self._clock = clock or (lambda: datetime.now(UTC))

    async def run(
        self,
        transfer_id: str,
        target_guild_id: str,
        *,
        exclude: Callable[[Credential], bool] | None = None,
    ) -> TransferRecord | None:
        """Run one batch job. Returns the final record, or None if it could not be persisted.

        ``exclude`` drops credentials from the snapshot before ``total`` is fixed.
        """
        results: list[MemberOutcome] = []
        counters = {name: 0 for name in _COUNTER_BY_KIND.values()}
        started = False

        try:
            logger.info(f"[Transfer {transfer_id}] Starting, target guild {target_guild_id}")
            await self._update(transfer_id, status=TransferStatus.IN_PROGRESS)
            started = True

            snapshot = await self.credentials.list_all()
            if exclude is not None:
                snapshot = [c for c in snapshot if not exclude(c)]
            logger.info(f"[Transfer {transfer_id}] Snapshot holds {len(snapshot)} authorized users")
            await self._update(transfer_id, total=len(snapshot))

            for index, credential in enumerate(snapshot):
                outcome = await self._process(credential, target_guild_id)
                results.append(outcome)
                counters[_COUNTER_BY_KIND[outcome.status]] += 1
                logger.debug(
                    f"[Transfer {transfer_id}] {credential.username} ({credential.user_id}): "
                    f"{outcome.status} {outcome.reason or ''}"
                )

                await self._update(transfer_id, results=list(results), **counters)

                if self.delay > 0 and index < len(snapshot) - 1:
                    await asyncio.sleep(self.delay)

            record = await self._update(
                transfer_id,
                status=TransferStatus.COMPLETED,
                completed_at=self._clock(),
            )
            logger.info(
                f"[Transfer {transfer_id}] Completed - Success: {counters['success_count']}, "
                f"Skipped: {counters['skipped_count']}, Failed: {counters['failed_count']}"
            )
            return record

        except Exception as e:
            logger.exception(f"[Transfer {transfer_id}] Failed: {type(e).__name__}: {e}")
            return await self._mark_failed(transfer_id, e, started=started)

    async def _process(self, credential: Credential, target_guild_id: str) -> MemberOutcome:
        if credential.is_expired(self._clock()):
            result = AddMemberResult.failed(TOKEN_EXPIRED)
        else:
            result = await self.gateway.add_member(
                target_guild_id,
                credential.user_id,
                credential.access_token,
                expires_at=credential.expires_at,
            )

        kind = _KIND_BY_OUTCOME[result.outcome]
        return MemberOutcome(
            user_id=credential.user_id,
            username=credential.username,
            discriminator=credential.discriminator or "0",
            status=kind,
            reason=result.reason,
        )

    async def _update(self, transfer_id: str, **fields: Any) -> TransferRecord:
        record = await self.transfers.update(transfer_id, **fields)
        if record is None:
            raise TransferNotFoundError(f"Transfer {transfer_id} not found or already finished")
        return record

    async def _mark_failed(
        self, transfer_id: str, error: Exception, *, started: bool
    ) -> TransferRecord | None:
        try:
            if not started:
                # pending may only reach a terminal state through in_progress
                await self.transfers.update(transfer_id, status=TransferStatus.IN_PROGRESS)
            return await self.transfers.update(
                transfer_id,
                status=TransferStatus.FAILED,
                error_message=str(error) or type(error).__name__,
                completed_at=self._clock(),
            )
        except Exception:
            logger.exception(f"[Transfer {transfer_id}] Could not record failure")
            return None

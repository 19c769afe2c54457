"""Transfer API routes: start a batch, poll its progress, list history."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from api.core.dependencies import (
    get_current_user_id,
    get_transfer_repository,
    get_transfer_service,
)
from shared.models.transfer import MemberOutcome, TransferRecord, TransferStatus
from shared.repositories import TransferRepository
from shared.services import TransferPreconditionError, TransferService, progress_from_record

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["transfers"])


# ============================================
# Request / Response Models
# ============================================


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartTransferRequest(CamelModel):
    source_guild_id: str
    target_guild_id: str


class MemberResultResponse(CamelModel):
    user_id: str
    username: str
    discriminator: str
    status: str
    reason: str | None = None

    @classmethod
    def from_outcome(cls, outcome: MemberOutcome) -> "MemberResultResponse":
        return cls(
            user_id=outcome.user_id,
            username=outcome.username,
            discriminator=outcome.discriminator,
            status=str(outcome.status),
            reason=outcome.reason,
        )


class TransferProgressResponse(CamelModel):
    transfer_id: str
    status: str
    current: int
    total: int
    success_count: int
    skipped_count: int
    failed_count: int
    results: list[MemberResultResponse]


class TransferRecordResponse(CamelModel):
    id: str
    discord_user_id: str
    source_guild_id: str
    source_guild_name: str
    target_guild_id: str
    target_guild_name: str
    status: str
    total_members: int
    success_count: int
    skipped_count: int
    failed_count: int
    results: list[MemberResultResponse]
    error_message: str | None
    started_at: datetime | None
    completed_at: datetime | None

    @classmethod
    def from_record(cls, record: TransferRecord) -> "TransferRecordResponse":
        return cls(
            id=record.id,
            discord_user_id=record.initiator_id,
            source_guild_id=record.source_guild_id,
            source_guild_name=record.source_guild_name,
            target_guild_id=record.target_guild_id,
            target_guild_name=record.target_guild_name,
            status=str(record.status),
            total_members=record.total,
            success_count=record.success_count,
            skipped_count=record.skipped_count,
            failed_count=record.failed_count,
            results=[MemberResultResponse.from_outcome(o) for o in record.results],
            error_message=record.error_message,
            started_at=record.created_at,
            completed_at=record.completed_at,
        )


# ============================================
# Endpoints
# ============================================


@router.post(
    "/transfer/start",
    response_model=TransferProgressResponse,
    response_model_exclude_none=True,
)
async def start_transfer(
    body: StartTransferRequest,
    user_id: str = Depends(get_current_user_id),
    service: TransferService = Depends(get_transfer_service),
) -> TransferProgressResponse:
    """Validate the request, create a transfer record and run it in the background."""
    try:
        record = await service.start(user_id, body.source_guild_id, body.target_guild_id)
    except TransferPreconditionError as e:
        logger.warning(f"Transfer rejected for {user_id}: {e.code}")
        raise HTTPException(status_code=401 if e.is_auth_error else 400, detail=e.message) from None
    except Exception as e:
        logger.exception(f"Error starting transfer: {e}")
        raise HTTPException(status_code=500, detail="Internal server error") from None

    return TransferProgressResponse(
        transfer_id=record.id,
        status=str(TransferStatus.IN_PROGRESS),
        current=0,
        total=0,
        success_count=0,
        skipped_count=0,
        failed_count=0,
        results=[],
    )


@router.get(
    "/transfer/status/{transfer_id}",
    response_model=TransferProgressResponse,
    response_model_exclude_none=True,
)
async def get_transfer_status(
    transfer_id: str,
    repo: TransferRepository = Depends(get_transfer_repository),
) -> TransferProgressResponse:
    """Reconstruct progress from the stored record."""
    record = await repo.get(transfer_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Transfer not found")

    progress = progress_from_record(record)
    return TransferProgressResponse(
        transfer_id=progress.transfer_id,
        status=str(progress.status),
        current=progress.current,
        total=progress.total,
        success_count=progress.success_count,
        skipped_count=progress.skipped_count,
        failed_count=progress.failed_count,
        results=[MemberResultResponse.from_outcome(o) for o in progress.results],
    )


@router.get("/transfers", response_model=list[TransferRecordResponse])
async def list_transfers(
    user_id: str = Depends(get_current_user_id),
    repo: TransferRepository = Depends(get_transfer_repository),
) -> list[TransferRecordResponse]:
    """The caller's transfer history, oldest first."""
    records = await repo.list_by_user(user_id)
    return [TransferRecordResponse.from_record(r) for r in records]

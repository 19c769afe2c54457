"""Data models for the transfers table and its progress projection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class TransferStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.COMPLETED, TransferStatus.FAILED)

    def can_transition_to(self, new: TransferStatus) -> bool:
        """Forward-only: pending -> in_progress -> {completed, failed}."""
        if self.is_terminal:
            return False
        if new.is_terminal:
            return self is TransferStatus.IN_PROGRESS
        return _STATUS_RANK[new] >= _STATUS_RANK[self]


_STATUS_RANK = {
    TransferStatus.PENDING: 0,
    TransferStatus.IN_PROGRESS: 1,
    TransferStatus.COMPLETED: 2,
    TransferStatus.FAILED: 2,
}


class OutcomeKind(StrEnum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class MemberOutcome:
    """Result of processing one credential during a transfer."""

    user_id: str
    username: str
    discriminator: str
    status: OutcomeKind
    reason: str | None = None

    def to_dict(self) -> dict:
        data = {
            "userId": self.user_id,
            "username": self.username,
            "discriminator": self.discriminator,
            "status": str(self.status),
        }
        if self.reason is not None:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: dict) -> MemberOutcome:
        return cls(
            user_id=data["userId"],
            username=data.get("username", ""),
            discriminator=data.get("discriminator", "0"),
            status=OutcomeKind(data["status"]),
            reason=data.get("reason"),
        )


@dataclass
class TransferRecord:
    """One batch job moving authorized users into a target guild."""

    id: str
    initiator_id: str
    source_guild_id: str
    source_guild_name: str
    target_guild_id: str
    target_guild_name: str
    status: TransferStatus = TransferStatus.PENDING
    total: int = 0
    success_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    results: list[MemberOutcome] = field(default_factory=list)
    error_message: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def processed(self) -> int:
        return self.success_count + self.skipped_count + self.failed_count


@dataclass
class TransferProgress:
    """Client-facing snapshot reconstructed from a TransferRecord."""

    transfer_id: str
    status: TransferStatus
    current: int
    total: int
    success_count: int
    skipped_count: int
    failed_count: int
    results: list[MemberOutcome] = field(default_factory=list)

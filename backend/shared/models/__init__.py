"""Shared data models for the transfer service."""

from .credential import Credential
from .transfer import (
    MemberOutcome,
    OutcomeKind,
    TransferProgress,
    TransferRecord,
    TransferStatus,
)

__all__ = [
    "Credential",
    "MemberOutcome",
    "OutcomeKind",
    "TransferProgress",
    "TransferRecord",
    "TransferStatus",
]

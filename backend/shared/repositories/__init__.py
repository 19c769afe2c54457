"""Shared repository layer for the transfer service."""

from .credential import CredentialRepository
from .transfer import TransferRepository

__all__ = [
    "CredentialRepository",
    "TransferRepository",
]

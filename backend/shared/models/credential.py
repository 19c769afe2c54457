"""Data model for the oauth_credentials table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Credential:
    """Stored OAuth2 grant for one Discord user.

    The profile fields are a snapshot taken at authorization time and are
    refreshed only when the user authorizes again.
    """

    user_id: str
    username: str
    access_token: str
    expires_at: datetime
    scopes: str = ""
    refresh_token: str | None = None
    discriminator: str = "0"
    avatar: str | None = None
    is_bot: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    @property
    def scope_set(self) -> set[str]:
        return set(self.scopes.split())

"""Repository for the oauth_credentials table."""

from __future__ import annotations

import logging

import asyncpg

from shared.models.credential import Credential

logger = logging.getLogger(__name__)

_SELECT_COLS = (
    "user_id, username, discriminator, avatar, is_bot, access_token, "
    "refresh_token, scopes, expires_at, created_at, updated_at"
)


class CredentialRepository:
    """Pure SQL operations for stored OAuth grants."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self, user_id: str) -> Credential | None:
        """Get one user's credential."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SELECT_COLS} FROM oauth_credentials WHERE user_id = $1",
                user_id,
            )
            if not row:
                return None
            return Credential(**dict(row))

    async def list_all(self) -> list[Credential]:
        """Return a point-in-time snapshot of every stored credential."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_SELECT_COLS} FROM oauth_credentials ORDER BY created_at, user_id"
            )
            return [Credential(**dict(r)) for r in rows]

    async def upsert(self, credential: Credential) -> Credential:
        """Insert or overwrite a user's grant and profile snapshot."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO oauth_credentials (
                    user_id, username, discriminator, avatar, is_bot,
                    access_token, refresh_token, scopes, expires_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (user_id) DO UPDATE SET
                    username      = EXCLUDED.username,
                    discriminator = EXCLUDED.discriminator,
                    avatar        = EXCLUDED.avatar,
                    is_bot        = EXCLUDED.is_bot,
                    access_token  = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    scopes        = EXCLUDED.scopes,
                    expires_at    = EXCLUDED.expires_at,
                    updated_at    = NOW()
                RETURNING {_SELECT_COLS}
                """,
                credential.user_id,
                credential.username,
                credential.discriminator,
                credential.avatar,
                credential.is_bot,
                credential.access_token,
                credential.refresh_token,
                credential.scopes,
                credential.expires_at,
            )
        logger.debug(f"Credential stored for {credential.username} ({credential.user_id})")
        return Credential(**dict(row))

    async def delete(self, user_id: str) -> bool:
        """Revoke a credential. Returns True if a row was deleted."""
        async with self.pool.acquire() as conn:
            result: str = await conn.execute(
                "DELETE FROM oauth_credentials WHERE user_id = $1",
                user_id,
            )
        return result == "DELETE 1"

"""Dependency injection utilities for FastAPI"""

import logging

import asyncpg
from fastapi import Cookie, Depends, HTTPException

from api.core.config import get_settings
from api.services import AuthService, DiscordAPIClient
from shared.database import get_database_manager
from shared.repositories import CredentialRepository, TransferRepository
from shared.services import DiscordGuildGateway, TransferService

logger = logging.getLogger(__name__)

AUTH_COOKIE = "auth_token"


# ============================================
# Service Dependencies
# ============================================


def get_auth_service() -> AuthService:
    """Get AuthService instance (dependency injection)"""
    settings = get_settings()
    return AuthService(
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        expire_days=settings.jwt_expire_days,
    )


_discord_api: DiscordAPIClient | None = None


def get_discord_api() -> DiscordAPIClient:
    """Get shared DiscordAPIClient singleton (connection reuse)."""
    global _discord_api
    if _discord_api is None:
        settings = get_settings()
        _discord_api = DiscordAPIClient(
            client_id=settings.discord_client_id,
            client_secret=settings.discord_client_secret,
            redirect_uri=settings.oauth_redirect_uri,
        )
    return _discord_api


async def close_discord_api() -> None:
    """Close the shared DiscordAPIClient. Call on app shutdown."""
    global _discord_api
    if _discord_api is not None:
        await _discord_api.close()
        _discord_api = None


def get_db_pool() -> asyncpg.Pool:
    db_manager = get_database_manager()
    if db_manager is None or db_manager._pool is None:
        raise HTTPException(status_code=503, detail="Database not ready")
    return db_manager._pool


def get_credential_repository(pool: asyncpg.Pool = Depends(get_db_pool)) -> CredentialRepository:
    return CredentialRepository(pool)


def get_transfer_repository(pool: asyncpg.Pool = Depends(get_db_pool)) -> TransferRepository:
    return TransferRepository(pool)


# Built once in the app lifespan, after the pool and the bot client exist
_gateway: DiscordGuildGateway | None = None
_transfer_service: TransferService | None = None


def init_transfer_runtime(gateway: DiscordGuildGateway, service: TransferService) -> None:
    global _gateway, _transfer_service
    _gateway = gateway
    _transfer_service = service


def clear_transfer_runtime() -> None:
    global _gateway, _transfer_service
    _gateway = None
    _transfer_service = None


def get_gateway() -> DiscordGuildGateway:
    if _gateway is None:
        raise HTTPException(status_code=503, detail="Bot not ready")
    return _gateway


def get_transfer_service() -> TransferService:
    if _transfer_service is None:
        raise HTTPException(status_code=503, detail="Transfer service not ready")
    return _transfer_service


# ============================================
# Authentication Dependencies
# ============================================


def get_token_payload(
    auth_token: str | None = Cookie(None),
    auth_service: AuthService = Depends(get_auth_service),
) -> dict:
    """Verify the session JWT and return its payload"""
    if not auth_token:
        logger.warning("No auth token provided")
        raise HTTPException(status_code=401, detail="Not authorized")

    payload = auth_service.verify_token(auth_token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return payload


async def get_current_user_id(payload: dict = Depends(get_token_payload)) -> str:
    """Return the Discord user id of the session owner"""
    return str(payload["sub"])

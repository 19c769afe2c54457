"""Authentication API routes: Discord OAuth2 authorization and session cookie"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from api.core.config import Settings, get_settings
from api.core.dependencies import (
    AUTH_COOKIE,
    get_auth_service,
    get_credential_repository,
    get_current_user_id,
    get_discord_api,
)
from api.services import AuthService, DiscordAPIClient
from shared.database import get_database_manager
from shared.repositories import CredentialRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["authentication"])

SESSION_MAX_AGE = 30 * 24 * 60 * 60


# ============================================
# Response Models
# ============================================


class OAuthURLResponse(BaseModel):
    oauth_url: str
    redirect_uri: str
    client_id: str


class UserInfoResponse(BaseModel):
    id: str
    username: str
    discriminator: str
    avatar: str
    scopes: list[str]


class MessageResponse(BaseModel):
    message: str


def _clear_session(response: Response) -> None:
    response.delete_cookie(
        key=AUTH_COOKIE,
        path="/",
        httponly=True,
        secure=True,
        samesite="none",
    )


# ============================================
# Endpoints
# ============================================


@router.get("/auth/discord/oauth", response_model=OAuthURLResponse)
async def get_discord_oauth_url(
    discord_api: DiscordAPIClient = Depends(get_discord_api),
) -> OAuthURLResponse:
    """Get the Discord authorization URL (identify guilds guilds.join)."""
    if not discord_api.is_configured:
        raise HTTPException(status_code=503, detail="Discord OAuth is not configured")

    return OAuthURLResponse(
        oauth_url=discord_api.generate_oauth_url(),
        redirect_uri=discord_api.redirect_uri,
        client_id=discord_api.client_id,
    )


@router.get("/auth/discord/callback")
async def discord_oauth_callback(
    code: str | None = None,
    error: str | None = None,
    discord_api: DiscordAPIClient = Depends(get_discord_api),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Handle the Discord OAuth callback: store the grant and open a session."""
    error_redirect = f"{settings.frontend_url}/"

    if error:
        logger.error(f"OAuth error from Discord: {error}")
        return RedirectResponse(url=f"{error_redirect}?error={error}")

    if not code:
        logger.error("No OAuth code received from Discord")
        return RedirectResponse(url=f"{error_redirect}?error=no_code")

    # Check DB readiness here (not via Depends) so the browser gets a redirect, not a 503
    db_manager = get_database_manager()
    if db_manager is None or db_manager._pool is None:
        logger.error("Database not ready during OAuth callback")
        return RedirectResponse(url=f"{error_redirect}?error=db_not_ready")

    result = await discord_api.exchange_code(code)
    if not result.success or result.credential is None:
        logger.error(f"Failed to exchange code: {result.error}")
        return RedirectResponse(url=f"{error_redirect}?error={result.error}")

    credential = result.credential
    try:
        await CredentialRepository(db_manager._pool).upsert(credential)
    except Exception as e:
        logger.error(
            f"DB error storing credential for {credential.username}: {type(e).__name__}: {e}"
        )
        return RedirectResponse(url=f"{error_redirect}?error=save_token_failed")

    response = RedirectResponse(url=f"{settings.frontend_url}/dashboard?authorized=true")
    response.set_cookie(
        key=AUTH_COOKIE,
        value=auth_service.create_access_token(credential.user_id),
        httponly=True,
        secure=True,
        samesite="none",
        max_age=SESSION_MAX_AGE,
    )

    logger.info(f"[OAuth] Authorized user {credential.username} ({credential.user_id})")
    return response


@router.get("/auth/user", response_model=UserInfoResponse)
async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    repo: CredentialRepository = Depends(get_credential_repository),
) -> UserInfoResponse:
    """Profile snapshot stored at authorization time."""
    credential = await repo.get(user_id)
    if credential is None:
        raise HTTPException(status_code=401, detail="Not authorized")

    return UserInfoResponse(
        id=credential.user_id,
        username=credential.username,
        discriminator=credential.discriminator,
        avatar=DiscordAPIClient.get_avatar_url(credential.user_id, credential.avatar),
        scopes=sorted(credential.scope_set),
    )


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    user_id: str = Depends(get_current_user_id),
) -> MessageResponse:
    """End the session. The stored grant is kept."""
    _clear_session(response)
    logger.info(f"User logged out: {user_id}")
    return MessageResponse(message="Logged out successfully")


@router.delete("/auth/credential", response_model=MessageResponse)
async def revoke_credential(
    response: Response,
    user_id: str = Depends(get_current_user_id),
    repo: CredentialRepository = Depends(get_credential_repository),
) -> MessageResponse:
    """Delete the stored grant so future transfers no longer include this user."""
    deleted = await repo.delete(user_id)
    _clear_session(response)
    if not deleted:
        raise HTTPException(status_code=404, detail="No stored authorization")

    logger.info(f"User {user_id} revoked their authorization")
    return MessageResponse(message="Authorization revoked")

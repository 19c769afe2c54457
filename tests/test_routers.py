"""Tests for the HTTP surface: transfers, guilds and the OAuth callback."""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.core.config import Settings, get_settings
from api.core.dependencies import (
    AUTH_COOKIE,
    get_auth_service,
    get_credential_repository,
    get_current_user_id,
    get_discord_api,
    get_gateway,
    get_transfer_repository,
    get_transfer_service,
)
from api.routers import auth_router, guilds_router, transfers_router
from api.services import AuthService, DiscordAPIClient
from conftest import FakeGateway, InMemoryCredentialStore, InMemoryTransferStore, make_credential
from shared.models import MemberOutcome, OutcomeKind, TransferRecord, TransferStatus
from shared.services import TransferPreconditionError


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        discord_client_id="client-id",
        discord_client_secret="client-secret",
        discord_bot_token="bot-token",
        jwt_secret_key="test-secret",
        database_url="postgresql://localhost/test",
        frontend_url="http://frontend",
        api_url="http://api",
    )


@pytest.fixture
def credential_store():
    return InMemoryCredentialStore()


@pytest.fixture
def transfer_store():
    return InMemoryTransferStore()


@pytest.fixture
def service():
    return MagicMock(start=AsyncMock())


@pytest.fixture
def app(settings, credential_store, transfer_store, service):
    app = FastAPI()
    app.include_router(auth_router.router)
    app.include_router(guilds_router.router)
    app.include_router(transfers_router.router)

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_auth_service] = lambda: AuthService("test-secret")
    app.dependency_overrides[get_credential_repository] = lambda: credential_store
    app.dependency_overrides[get_transfer_repository] = lambda: transfer_store
    app.dependency_overrides[get_transfer_service] = lambda: service
    app.dependency_overrides[get_gateway] = lambda: FakeGateway()
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def authed(app, client):
    app.dependency_overrides[get_current_user_id] = lambda: "initiator"
    return client


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


class TestStartTransfer:
    def test_requires_session(self, client):
        response = client.post("/api/transfer/start", json={"sourceGuildId": "111", "targetGuildId": "222"})

        assert response.status_code == 401

    def test_returns_in_progress_snapshot(self, authed, service):
        service.start.return_value = SimpleNamespace(id="t-1")

        response = authed.post("/api/transfer/start", json={"sourceGuildId": "111", "targetGuildId": "222"})

        assert response.status_code == 200
        assert response.json() == {
            "transferId": "t-1",
            "status": "in_progress",
            "current": 0,
            "total": 0,
            "successCount": 0,
            "skippedCount": 0,
            "failedCount": 0,
            "results": [],
        }
        service.start.assert_awaited_once_with("initiator", "111", "222")

    @pytest.mark.parametrize(
        ("code", "status_code"),
        [
            (TransferPreconditionError.NOT_AUTHORIZED, 401),
            (TransferPreconditionError.TOKEN_EXPIRED, 401),
            (TransferPreconditionError.SAME_GUILD, 400),
            (TransferPreconditionError.BOT_MISSING, 400),
        ],
    )
    def test_precondition_errors(self, authed, service, code, status_code):
        service.start.side_effect = TransferPreconditionError(code, "nope")

        response = authed.post("/api/transfer/start", json={"sourceGuildId": "111", "targetGuildId": "222"})

        assert response.status_code == status_code
        assert response.json()["detail"] == "nope"

    def test_unexpected_error_is_500(self, authed, service):
        service.start.side_effect = RuntimeError("db down")

        response = authed.post("/api/transfer/start", json={"sourceGuildId": "111", "targetGuildId": "222"})

        assert response.status_code == 500


class TestTransferStatus:
    def test_unknown_transfer(self, client):
        response = client.get("/api/transfer/status/does-not-exist")

        assert response.status_code == 404
        assert response.json()["detail"] == "Transfer not found"

    def test_progress_projection(self, client, transfer_store):
        record = TransferRecord(
            id="t-1",
            initiator_id="initiator",
            source_guild_id="111",
            source_guild_name="Source",
            target_guild_id="222",
            target_guild_name="Target",
            status=TransferStatus.IN_PROGRESS,
            total=3,
            results=[
                MemberOutcome("a", "alice", "0", OutcomeKind.SUCCESS),
                MemberOutcome("b", "bob", "0", OutcomeKind.FAILED, "Missing permissions"),
            ],
            success_count=1,
            failed_count=1,
        )
        transfer_store.records[record.id] = record

        body = client.get(f"/api/transfer/status/{record.id}").json()

        assert body["status"] == "in_progress"
        assert body["current"] == 2
        assert body["total"] == 3
        assert body["results"][0] == {"userId": "a", "username": "alice", "discriminator": "0", "status": "success"}
        assert body["results"][1]["reason"] == "Missing permissions"


class TestTransferHistory:
    def test_lists_only_callers_transfers(self, authed, transfer_store):
        for index, initiator in enumerate(("initiator", "someone-else")):
            transfer_store.records[str(index)] = TransferRecord(
                id=str(index),
                initiator_id=initiator,
                source_guild_id="111",
                source_guild_name="Source",
                target_guild_id="222",
                target_guild_name="Target",
            )

        body = authed.get("/api/transfers").json()

        assert len(body) == 1
        assert body[0]["discordUserId"] == "initiator"
        assert body[0]["totalMembers"] == 0
        assert body[0]["status"] == "pending"


# ---------------------------------------------------------------------------
# Guilds
# ---------------------------------------------------------------------------


class TestGuilds:
    def test_expired_token(self, app, authed, credential_store):
        credential_store.credentials["initiator"] = make_credential("initiator", expired=True)
        app.dependency_overrides[get_discord_api] = lambda: MagicMock()

        response = authed.get("/api/guilds")

        assert response.status_code == 401
        assert response.json()["detail"] == "Token expired. Please re-authorize."

    def test_annotates_bot_presence(self, app, authed, credential_store):
        credential = make_credential("initiator")
        credential.expires_at = credential.expires_at + timedelta(days=3650)
        credential_store.credentials["initiator"] = credential
        discord_api = MagicMock()
        discord_api.get_user_guilds = AsyncMock(
            return_value=[
                {"id": "111", "name": "Home", "icon": None, "approximate_member_count": 5},
                {"id": "333", "name": "Elsewhere", "icon": "abc", "approximate_member_count": 7},
            ]
        )
        app.dependency_overrides[get_discord_api] = lambda: discord_api

        body = authed.get("/api/guilds").json()

        assert [(g["id"], g["botPresent"]) for g in body] == [("111", True), ("333", False)]
        assert body[1]["memberCount"] == 7


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


def _discord_api(handler):
    return DiscordAPIClient(
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://api/api/auth/discord/callback",
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _oauth_handler(request):
    if request.url.path.endswith("/oauth2/token"):
        return httpx.Response(
            200,
            json={"access_token": "fresh", "expires_in": 604800, "scope": "identify guilds guilds.join"},
        )
    if request.url.path.endswith("/users/@me"):
        return httpx.Response(200, json={"id": "42", "username": "alice", "discriminator": "0"})
    return httpx.Response(404)


class TestOAuth:
    def test_oauth_url(self, app, client):
        app.dependency_overrides[get_discord_api] = lambda: _discord_api(_oauth_handler)

        body = client.get("/api/auth/discord/oauth").json()

        assert body["client_id"] == "client-id"
        assert "guilds.join" in body["oauth_url"]
        assert body["redirect_uri"] == "http://api/api/auth/discord/callback"

    def test_callback_stores_credential_and_sets_cookie(self, app, client, credential_store):
        app.dependency_overrides[get_discord_api] = lambda: _discord_api(_oauth_handler)
        db_manager = SimpleNamespace(_pool=MagicMock())

        with (
            patch.object(auth_router, "get_database_manager", return_value=db_manager),
            patch.object(auth_router, "CredentialRepository", return_value=credential_store),
        ):
            response = client.get("/api/auth/discord/callback?code=abc", follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == "http://frontend/dashboard?authorized=true"
        assert response.headers["set-cookie"].startswith(f"{AUTH_COOKIE}=")
        stored = credential_store.credentials["42"]
        assert stored.access_token == "fresh"
        assert stored.scope_set == {"identify", "guilds", "guilds.join"}

    def test_callback_error_redirects(self, app, client):
        app.dependency_overrides[get_discord_api] = lambda: _discord_api(_oauth_handler)

        response = client.get("/api/auth/discord/callback?error=access_denied", follow_redirects=False)

        assert response.headers["location"] == "http://frontend/?error=access_denied"

    def test_revoke_deletes_credential(self, authed, credential_store):
        credential_store.credentials["initiator"] = make_credential("initiator")

        response = authed.delete("/api/auth/credential")

        assert response.status_code == 200
        assert "initiator" not in credential_store.credentials

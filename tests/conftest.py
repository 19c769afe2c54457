"""Shared fixtures: in-memory stores and a scripted membership gateway."""

import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from shared.models import Credential, TransferRecord, TransferStatus
from shared.repositories.transfer import IMMUTABLE_FIELDS, MUTABLE_FIELDS
from shared.services import AddMemberResult, GuildInfo, TransferOrchestrator

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


def make_credential(user_id: str, *, expired: bool = False, is_bot: bool = False) -> Credential:
    expires_at = NOW - timedelta(hours=1) if expired else NOW + timedelta(days=7)
    return Credential(
        user_id=user_id,
        username=f"user-{user_id}",
        access_token=f"token-{user_id}",
        expires_at=expires_at,
        scopes="identify guilds guilds.join",
        is_bot=is_bot,
    )


class InMemoryCredentialStore:
    def __init__(self, credentials=()):
        self.credentials: dict[str, Credential] = {c.user_id: c for c in credentials}

    async def get(self, user_id):
        return self.credentials.get(user_id)

    async def list_all(self):
        return list(self.credentials.values())

    async def upsert(self, credential):
        self.credentials[credential.user_id] = credential
        return credential

    async def delete(self, user_id):
        return self.credentials.pop(user_id, None) is not None


class InMemoryTransferStore:
    """Mirrors TransferRepository guards: forward-only status, write-once total."""

    def __init__(self):
        self.records: dict[str, TransferRecord] = {}
        self.history: list[tuple[str, dict]] = []

    async def create(self, **fields):
        record = TransferRecord(id=str(uuid.uuid4()), created_at=NOW, **fields)
        self.records[record.id] = record
        return replace(record, results=list(record.results))

    async def get(self, transfer_id):
        record = self.records.get(transfer_id)
        return replace(record, results=list(record.results)) if record else None

    async def update(self, transfer_id, **fields):
        unknown = set(fields) - set(MUTABLE_FIELDS) - IMMUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown transfer fields: {sorted(unknown)}")

        record = self.records.get(transfer_id)
        if record is None or record.status.is_terminal:
            return None
        if "status" in fields and not record.status.can_transition_to(TransferStatus(fields["status"])):
            return None
        if "total" in fields and record.total != 0:
            return None

        changes = {k: v for k, v in fields.items() if k in MUTABLE_FIELDS}
        if "results" in changes:
            changes["results"] = list(changes["results"])
        record = replace(record, **changes)
        self.records[transfer_id] = record
        self.history.append((transfer_id, dict(changes)))
        return replace(record, results=list(record.results))

    async def list_by_user(self, user_id):
        return [r for r in self.records.values() if r.initiator_id == user_id]


class FakeGateway:
    """Scripted gateway: per-user results or exceptions, default success."""

    def __init__(self, guilds=("111", "222")):
        self.scripted: dict[str, AddMemberResult | Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.guilds = {g: GuildInfo(id=g, name=f"Guild {g}", icon=None, approx_member_count=10) for g in guilds}
        self.on_call = None

    def guild_info(self, guild_id):
        return self.guilds.get(guild_id)

    def is_bot_member(self, guild_id):
        return guild_id in self.guilds

    async def add_member(self, guild_id, user_id, access_token, *, expires_at=None):
        self.calls.append((guild_id, user_id))
        if self.on_call is not None:
            await self.on_call(user_id)
        result = self.scripted.get(user_id, AddMemberResult.added())
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def credentials():
    return InMemoryCredentialStore()


@pytest.fixture
def transfers():
    return InMemoryTransferStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def orchestrator(credentials, transfers, gateway):
    return TransferOrchestrator(credentials, transfers, gateway, delay=0, clock=lambda: NOW)


@pytest_asyncio.fixture
async def pending_record(transfers):
    return await transfers.create(
        initiator_id="initiator",
        source_guild_id="111",
        source_guild_name="Guild 111",
        target_guild_id="222",
        target_guild_name="Guild 222",
    )

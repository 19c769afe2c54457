"""Tests for TransferRepository SQL construction and row mapping."""

import json
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import NOW
from shared.models import MemberOutcome, OutcomeKind, TransferStatus
from shared.repositories import TransferRepository

TRANSFER_ID = str(uuid.uuid4())


def _row(**overrides):
    row = {
        "id": uuid.UUID(TRANSFER_ID),
        "initiator_id": "initiator",
        "source_guild_id": "111",
        "source_guild_name": "Source",
        "target_guild_id": "222",
        "target_guild_name": "Target",
        "status": "in_progress",
        "total_members": 2,
        "success_count": 1,
        "skipped_count": 0,
        "failed_count": 0,
        "results": json.dumps([{"userId": "a", "username": "alice", "discriminator": "0", "status": "success"}]),
        "error_message": None,
        "created_at": NOW,
        "completed_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def conn():
    return AsyncMock()


@pytest.fixture
def repo(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    return TransferRepository(pool)


class TestGet:
    @pytest.mark.asyncio
    async def test_maps_row(self, repo, conn):
        conn.fetchrow.return_value = _row()

        record = await repo.get(TRANSFER_ID)

        assert record.id == TRANSFER_ID
        assert record.status == TransferStatus.IN_PROGRESS
        assert record.total == 2
        assert record.results == [MemberOutcome("a", "alice", "0", OutcomeKind.SUCCESS)]

    @pytest.mark.asyncio
    async def test_malformed_id_is_unknown(self, repo, conn):
        assert await repo.get("not-a-uuid") is None
        conn.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_row(self, repo, conn):
        conn.fetchrow.return_value = None

        assert await repo.get(TRANSFER_ID) is None


class TestUpdate:
    @pytest.mark.asyncio
    async def test_writes_only_given_fields(self, repo, conn):
        conn.fetchrow.return_value = _row()
        outcome = MemberOutcome("a", "alice", "0", OutcomeKind.FAILED, "Missing permissions")

        await repo.update(TRANSFER_ID, results=[outcome], failed_count=1)

        query, *params = conn.fetchrow.call_args.args
        assert "results = $2::jsonb" in query
        assert "failed_count = $3" in query
        assert "status NOT IN ('completed', 'failed')" in query
        assert "success_count" not in query.split("RETURNING")[0]
        assert params[0] == uuid.UUID(TRANSFER_ID)
        assert json.loads(params[1]) == [
            {
                "userId": "a",
                "username": "alice",
                "discriminator": "0",
                "status": "failed",
                "reason": "Missing permissions",
            }
        ]
        assert params[2] == 1

    @pytest.mark.asyncio
    async def test_total_maps_to_column(self, repo, conn):
        conn.fetchrow.return_value = _row()

        await repo.update(TRANSFER_ID, total=5)

        assert "total_members = $2" in conn.fetchrow.call_args.args[0]

    @pytest.mark.asyncio
    async def test_terminal_record_returns_none(self, repo, conn):
        conn.fetchrow.return_value = None

        assert await repo.update(TRANSFER_ID, status=TransferStatus.FAILED) is None

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, repo, conn):
        with pytest.raises(ValueError, match="bogus"):
            await repo.update(TRANSFER_ID, bogus=1)
        conn.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    async def test_immutable_fields_are_dropped(self, repo, conn):
        conn.fetchrow.return_value = _row()

        await repo.update(TRANSFER_ID, target_guild_id="999", success_count=2)

        query, *params = conn.fetchrow.call_args.args
        assert "target_guild_id =" not in query
        assert params == [uuid.UUID(TRANSFER_ID), 2]

    @pytest.mark.asyncio
    async def test_only_immutable_fields_reads_back(self, repo, conn):
        conn.fetchrow.return_value = _row()

        record = await repo.update(TRANSFER_ID, initiator_id="someone-else")

        assert record.initiator_id == "initiator"
        assert conn.fetchrow.call_args.args[0].lstrip().startswith("SELECT")


class TestListByUser:
    @pytest.mark.asyncio
    async def test_orders_oldest_first(self, repo, conn):
        conn.fetch.return_value = [_row(), _row(id=uuid.uuid4(), results=[])]

        records = await repo.list_by_user("initiator")

        assert len(records) == 2
        assert records[1].results == []
        assert "ORDER BY created_at ASC" in conn.fetch.call_args.args[0]


class TestUpdateGuards:
    @pytest.mark.asyncio
    async def test_status_change_requires_earlier_state(self, repo, conn):
        conn.fetchrow.return_value = _row()

        await repo.update(TRANSFER_ID, status=TransferStatus.IN_PROGRESS)

        query, *params = conn.fetchrow.call_args.args
        assert "status = ANY($3::text[])" in query
        assert params[2] == ["pending", "in_progress"]

    @pytest.mark.asyncio
    async def test_backward_status_and_total_rewrite_rejected(self, repo, conn):
        conn.fetchrow.return_value = None

        result = await repo.update(TRANSFER_ID, status="pending", total=99)

        query, *params = conn.fetchrow.call_args.args
        where = query.split("WHERE")[1]
        assert "status = ANY($4::text[])" in where
        assert "total_members = 0" in where
        assert params[3] == ["pending"]
        assert result is None

    @pytest.mark.asyncio
    async def test_terminal_status_only_from_in_progress(self, repo, conn):
        conn.fetchrow.return_value = _row(status="completed")

        await repo.update(TRANSFER_ID, status=TransferStatus.COMPLETED)

        assert conn.fetchrow.call_args.args[3] == ["in_progress"]


class TestStatusTransitions:
    @pytest.mark.parametrize(
        ("current", "new", "allowed"),
        [
            (TransferStatus.PENDING, TransferStatus.IN_PROGRESS, True),
            (TransferStatus.IN_PROGRESS, TransferStatus.IN_PROGRESS, True),
            (TransferStatus.IN_PROGRESS, TransferStatus.FAILED, True),
            (TransferStatus.PENDING, TransferStatus.FAILED, False),
            (TransferStatus.IN_PROGRESS, TransferStatus.PENDING, False),
            (TransferStatus.COMPLETED, TransferStatus.FAILED, False),
        ],
    )
    def test_forward_only(self, current, new, allowed):
        assert current.can_transition_to(new) is allowed

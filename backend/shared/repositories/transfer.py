"""Repository for the transfers table."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import asyncpg

from shared.models.transfer import MemberOutcome, TransferRecord, TransferStatus

logger = logging.getLogger(__name__)

_SELECT_COLS = (
    "id, initiator_id, source_guild_id, source_guild_name, target_guild_id, "
    "target_guild_name, status, total_members, success_count, skipped_count, "
    "failed_count, COALESCE(results, '[]') AS results, error_message, "
    "created_at, completed_at"
)

# Record attribute -> column. Only these may change after creation.
MUTABLE_FIELDS: dict[str, str] = {
    "status": "status",
    "total": "total_members",
    "success_count": "success_count",
    "skipped_count": "skipped_count",
    "failed_count": "failed_count",
    "results": "results",
    "error_message": "error_message",
    "completed_at": "completed_at",
}

IMMUTABLE_FIELDS = frozenset(
    {
        "id",
        "initiator_id",
        "source_guild_id",
        "source_guild_name",
        "target_guild_id",
        "target_guild_name",
        "created_at",
    }
)


def _row_to_record(row: asyncpg.Record) -> TransferRecord:
    d = dict(row)
    results = d.pop("results")
    if isinstance(results, str):
        results = json.loads(results)
    return TransferRecord(
        id=str(d["id"]),
        initiator_id=d["initiator_id"],
        source_guild_id=d["source_guild_id"],
        source_guild_name=d["source_guild_name"],
        target_guild_id=d["target_guild_id"],
        target_guild_name=d["target_guild_name"],
        status=TransferStatus(d["status"]),
        total=d["total_members"],
        success_count=d["success_count"],
        skipped_count=d["skipped_count"],
        failed_count=d["failed_count"],
        results=[MemberOutcome.from_dict(r) for r in results or []],
        error_message=d["error_message"],
        created_at=d["created_at"],
        completed_at=d["completed_at"],
    )


def _parse_id(transfer_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(transfer_id))
    except ValueError:
        return None


class TransferRepository:
    """Pure SQL operations for transfer records."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def create(
        self,
        initiator_id: str,
        source_guild_id: str,
        source_guild_name: str,
        target_guild_id: str,
        target_guild_name: str,
    ) -> TransferRecord:
        """Create a record in ``pending`` with zeroed counters."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO transfers (
                    initiator_id, source_guild_id, source_guild_name,
                    target_guild_id, target_guild_name, status
                )
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING {_SELECT_COLS}
                """,
                initiator_id,
                source_guild_id,
                source_guild_name,
                target_guild_id,
                target_guild_name,
                str(TransferStatus.PENDING),
            )
        return _row_to_record(row)

    async def get(self, transfer_id: str) -> TransferRecord | None:
        """Get a record by id. Malformed ids are treated as unknown."""
        key = _parse_id(transfer_id)
        if key is None:
            return None
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SELECT_COLS} FROM transfers WHERE id = $1",
                key,
            )
            if not row:
                return None
            return _row_to_record(row)

    async def update(self, transfer_id: str, **fields: Any) -> TransferRecord | None:
        """Merge mutable fields into a record.

        Immutable fields are dropped. Status only moves forward, terminal
        records are never modified and total is set once. A rejected write
        (or an unknown id) returns None.
        """
        key = _parse_id(transfer_id)
        if key is None:
            return None

        unknown = set(fields) - set(MUTABLE_FIELDS) - IMMUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown transfer fields: {', '.join(sorted(unknown))}")

        ignored = set(fields) & IMMUTABLE_FIELDS
        if ignored:
            logger.debug(f"Ignoring immutable fields on transfer {transfer_id}: {sorted(ignored)}")

        assignments: list[str] = []
        params: list[Any] = [key]
        for name, value in fields.items():
            if name not in MUTABLE_FIELDS:
                continue
            column = MUTABLE_FIELDS[name]
            params.append(self._encode(name, value))
            cast = "::jsonb" if name == "results" else ""
            assignments.append(f"{column} = ${len(params)}{cast}")

        if not assignments:
            return await self.get(transfer_id)

        guards = ["id = $1"]
        if "status" in fields:
            new_status = TransferStatus(fields["status"])
            params.append([str(s) for s in TransferStatus if s.can_transition_to(new_status)])
            guards.append(f"status = ANY(${len(params)}::text[])")
        else:
            guards.append("status NOT IN ('completed', 'failed')")
        if "total" in fields:
            # total is written once, right after the snapshot is taken
            guards.append("total_members = 0")

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE transfers SET {", ".join(assignments)}
                WHERE {" AND ".join(guards)}
                RETURNING {_SELECT_COLS}
                """,
                *params,
            )
            if not row:
                return None
            return _row_to_record(row)

    async def list_by_user(self, user_id: str) -> list[TransferRecord]:
        """All records started by a user, oldest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_SELECT_COLS} FROM transfers "
                "WHERE initiator_id = $1 ORDER BY created_at ASC",
                user_id,
            )
            return [_row_to_record(r) for r in rows]

    @staticmethod
    def _encode(name: str, value: Any) -> Any:
        if name == "results":
            return json.dumps([o.to_dict() for o in value or []])
        if name == "status":
            return str(TransferStatus(value))
        return value

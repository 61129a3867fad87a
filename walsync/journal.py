# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
walsync Cycle Journal - append-only record of CDC cycles.

Every cycle is recorded when it starts and completed with its counters or
its error. After a consistency failure the journal is what an operator
reads to find the last good LSN and the cycle that broke.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import List, TypedDict

import aiosqlite
import structlog

from walsync.exceptions import WalSyncError

logger = structlog.get_logger()

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class CycleRecord(TypedDict):
    """Record of a CDC cycle."""

    id: str  # ULID
    slot_name: str
    started_at: str  # ISO 8601
    completed_at: str | None
    status: str  # running, completed, failed
    stats: dict
    error: str | None


async def init_journal_db(db_path: Path) -> None:
    """
    Initialize the journal database schema.

    Creates tables if they don't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS cycles (
                    id TEXT PRIMARY KEY,
                    slot_name TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    status TEXT NOT NULL,
                    stats TEXT NOT NULL,
                    error TEXT
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_cycles_started_at
                ON cycles(started_at)
            """)

            await db.commit()

        logger.info("journal_db_initialized", db_path=str(db_path))

    except Exception as e:
        raise WalSyncError(
            f"Failed to initialize journal database: {e}",
            details={"db_path": str(db_path)},
        )


async def record_cycle_start(
    db: aiosqlite.Connection,
    cycle_id: str,
    slot_name: str,
) -> None:
    """
    Record the start of a cycle.

    Args:
        db: SQLite database connection
        cycle_id: Unique cycle ID (ULID)
        slot_name: Replication slot being consumed
    """
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        INSERT INTO cycles (id, slot_name, started_at, status, stats)
        VALUES (?, ?, ?, ?, ?)
        """,
        (cycle_id, slot_name, now, STATUS_RUNNING, json.dumps({})),
    )
    await db.commit()


async def complete_cycle(
    db: aiosqlite.Connection,
    cycle_id: str,
    stats: dict,
    error: str | None = None,
) -> None:
    """
    Mark a cycle as completed or failed.

    Args:
        db: SQLite database connection
        cycle_id: Cycle ID
        stats: Final counters
        error: Error message if the cycle failed
    """
    now = datetime.now(UTC).isoformat()
    status = STATUS_FAILED if error else STATUS_COMPLETED

    await db.execute(
        """
        UPDATE cycles
        SET stats = ?, completed_at = ?, status = ?, error = ?
        WHERE id = ?
        """,
        (json.dumps(stats), now, status, error, cycle_id),
    )
    await db.commit()


def _row_to_record(row) -> CycleRecord:
    return CycleRecord(
        id=row[0],
        slot_name=row[1],
        started_at=row[2],
        completed_at=row[3],
        status=row[4],
        stats=json.loads(row[5]),
        error=row[6],
    )


_SELECT_CYCLES = (
    "SELECT id, slot_name, started_at, completed_at, status, stats, error FROM cycles"
)


async def get_cycle(
    db: aiosqlite.Connection,
    cycle_id: str,
) -> CycleRecord | None:
    """
    Get a cycle record.

    Returns:
        Cycle record or None if not found
    """
    async with db.execute(f"{_SELECT_CYCLES} WHERE id = ?", (cycle_id,)) as cursor:
        row = await cursor.fetchone()
        return _row_to_record(row) if row else None


async def list_cycles(
    db: aiosqlite.Connection,
    limit: int = 50,
    offset: int = 0,
    status: str | None = None,
) -> List[CycleRecord]:
    """
    List cycles with pagination, newest first.

    Args:
        db: SQLite database connection
        limit: Maximum number of records to return
        offset: Number of records to skip
        status: Optional filter by status
    """
    query = _SELECT_CYCLES
    params: List = []

    if status:
        query += " WHERE status = ?"
        params.append(status)

    query += " ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    records: List[CycleRecord] = []

    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(_row_to_record(row))

    return records


async def get_journal_stats(db: aiosqlite.Connection) -> dict:
    """
    Get journal statistics.

    Returns:
        Dict with cycle counts by status and the last failure
    """
    stats = {}

    async with db.execute("SELECT COUNT(*) FROM cycles") as cursor:
        row = await cursor.fetchone()
        stats["total_cycles"] = row[0] if row else 0

    async with db.execute(
        "SELECT status, COUNT(*) FROM cycles GROUP BY status"
    ) as cursor:
        stats["cycles_by_status"] = {row[0]: row[1] async for row in cursor}

    async with db.execute(
        "SELECT id, error FROM cycles WHERE status = ? ORDER BY started_at DESC LIMIT 1",
        (STATUS_FAILED,),
    ) as cursor:
        row = await cursor.fetchone()
        stats["last_failure"] = {"id": row[0], "error": row[1]} if row else None

    return stats

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PostgreSQL replication slot - peek and acknowledge decoded WAL.

The slot must use the test_decoding output plugin. It is created with:

    SELECT pg_create_logical_replication_slot('elk_slot', 'test_decoding');

For production use, PostgreSQL must be configured with:
- wal_level = logical
- max_replication_slots >= 1
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict
from urllib.parse import urlparse

import asyncpg
import structlog

from walsync.cdc.operation import WalRecord
from walsync.exceptions import SlotError

logger = structlog.get_logger()

PLUGIN_NAME = "test_decoding"
SLOT_TYPE = "logical"

# lsn and xid come back as text so no custom codecs are needed
PEEK_ALL_SQL = """
    SELECT lsn::text AS lsn, xid::text AS xid, data
    FROM pg_logical_slot_peek_changes($1, NULL, NULL)
"""

COUNT_PENDING_SQL = """
    SELECT count(*) FROM pg_logical_slot_peek_changes($1, NULL, NULL)
"""

GET_PROCESSED_SQL = """
    SELECT count(*) FROM pg_logical_slot_get_changes($1, $2::pg_lsn, NULL)
"""

SLOT_EXISTS_SQL = """
    SELECT EXISTS (SELECT 1 FROM pg_replication_slots WHERE slot_name = $1)
"""


class PostgresReplicationSlot:
    """
    A test_decoding replication slot accessed through asyncpg.

    The cycle connection runs the peek cursor, the reconstruction queries and
    the acknowledgement. asyncpg allows one operation at a time per
    connection, so only the engine's cycle worker may use it (pending_count()
    is serialized with cycles by the engine). Health checks go through a
    separate monitor connection that never acquires the slot.
    """

    def __init__(
        self,
        conn: Any,
        slot_name: str,
        prefetch: int = 100,
        monitor_conn: Any | None = None,
    ) -> None:
        self._conn = conn
        self._monitor_conn = monitor_conn
        self.slot_name = slot_name
        self._prefetch = prefetch

    async def verify(self, create: bool = False) -> None:
        """
        Check that the slot exists, is logical and uses test_decoding.

        Args:
            create: Create the slot when it does not exist

        Raises:
            SlotError: If the slot is missing or has the wrong plugin/type
        """
        row = await self._conn.fetchrow(
            "SELECT plugin, slot_type FROM pg_replication_slots WHERE slot_name = $1",
            self.slot_name,
        )

        if row is None:
            if not create:
                raise SlotError(
                    f"Create replication slot with name [{self.slot_name}]",
                    details={"plugin": PLUGIN_NAME},
                )
            try:
                await self._conn.execute(
                    "SELECT pg_create_logical_replication_slot($1, $2)",
                    self.slot_name,
                    PLUGIN_NAME,
                )
            except asyncpg.DuplicateObjectError:
                pass
            logger.info("replication_slot_created", slot_name=self.slot_name)
            return

        if row["plugin"] != PLUGIN_NAME:
            raise SlotError(
                f"Replication slot [{self.slot_name}] must use {PLUGIN_NAME}",
                details={"plugin": row["plugin"]},
            )
        if row["slot_type"] != SLOT_TYPE:
            raise SlotError(
                f"Replication slot [{self.slot_name}] must be {SLOT_TYPE}",
                details={"slot_type": row["slot_type"]},
            )

        logger.debug("replication_slot_verified", slot_name=self.slot_name)

    @asynccontextmanager
    async def peek_changes(self) -> AsyncIterator[AsyncIterator[WalRecord]]:
        """Forward-only cursor over all pending records."""
        # asyncpg cursors only live inside a transaction
        async with self._conn.transaction():
            yield self._iterate(
                self._conn.cursor(PEEK_ALL_SQL, self.slot_name, prefetch=self._prefetch)
            )

    async def _iterate(self, cursor: Any) -> AsyncIterator[WalRecord]:
        async for row in cursor:
            yield WalRecord(lsn=row["lsn"], xid=row["xid"], data=row["data"])

    async def acknowledge(self, upto_lsn: str) -> int:
        """
        Consume every record up to and including upto_lsn.

        Returns:
            Number of records removed from the slot
        """
        return await self._conn.fetchval(GET_PROCESSED_SQL, self.slot_name, upto_lsn)

    async def fetch_row(self, query: str) -> Dict[str, Any] | None:
        row = await self._conn.fetchrow(query)
        return dict(row) if row is not None else None

    async def pending_count(self) -> int:
        """Peeking acquires the slot: never call this while a cycle is scanning."""
        return await self._conn.fetchval(COUNT_PENDING_SQL, self.slot_name)

    async def ping(self) -> bool:
        """True if the slot still exists. Safe to call while a cycle runs."""
        if self._monitor_conn is None:
            raise SlotError("No monitor connection", details={"slot_name": self.slot_name})
        return await self._monitor_conn.fetchval(SLOT_EXISTS_SQL, self.slot_name)

    async def close(self) -> None:
        await self._conn.close()
        if self._monitor_conn is not None:
            await self._monitor_conn.close()


async def connect_slot(
    connection_url: str,
    slot_name: str,
    *,
    create: bool = False,
    prefetch: int = 100,
) -> PostgresReplicationSlot:
    """
    Connect to PostgreSQL and verify the replication slot.

    Raises:
        SlotError: If the connection fails or the slot is unusable
    """
    try:
        conn = await asyncpg.connect(connection_url)
    except (OSError, asyncpg.PostgresError) as e:
        raise SlotError(
            f"Failed to connect to PostgreSQL: {e}",
            details={"connection_url": mask_password(connection_url)},
        ) from e

    slot = PostgresReplicationSlot(conn, slot_name, prefetch=prefetch)
    try:
        await slot.verify(create=create)
        slot._monitor_conn = await asyncpg.connect(connection_url)
    except (OSError, asyncpg.PostgresError) as e:
        await conn.close()
        raise SlotError(
            f"Failed to open monitor connection: {e}",
            details={"connection_url": mask_password(connection_url)},
        ) from e
    except Exception:
        await conn.close()
        raise

    logger.info(
        "replication_slot_connected",
        slot_name=slot_name,
        connection_url=mask_password(connection_url),
    )
    return slot


def mask_password(url: str) -> str:
    """Mask password in connection URL for logging."""
    parsed = urlparse(url)
    if parsed.password:
        masked = url.replace(f":{parsed.password}@", ":***@")
        return masked
    return url

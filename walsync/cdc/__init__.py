# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
CDC (Change Data Capture) Layer - read, parse and acknowledge decoded WAL.
"""

from typing import Any, AsyncContextManager, AsyncIterator, Dict, Protocol

from walsync.cdc.context import TransactionContext
from walsync.cdc.operation import (
    Begin,
    Commit,
    Operation,
    OperationKind,
    ParsedRecord,
    WalRecord,
)
from walsync.cdc.parser import DecodingParser


class ReplicationSource(Protocol):
    """Protocol for the replication slot the engine consumes."""

    slot_name: str

    def peek_changes(self) -> AsyncContextManager[AsyncIterator[WalRecord]]:
        """
        Open a forward-only scan over every pending record, in LSN order.

        Nothing is consumed; the slot is unchanged when the scan ends.
        """
        ...

    async def acknowledge(self, upto_lsn: str) -> int:
        """Consume every record up to and including upto_lsn; return how many."""
        ...

    async def fetch_row(self, query: str) -> Dict[str, Any] | None:
        """Run a reconstruction query and return its single row."""
        ...

    async def pending_count(self) -> int:
        """Number of records currently waiting in the slot."""
        ...

    async def ping(self) -> bool:
        """True if the slot exists. Must not contend with a running scan."""
        ...

    async def close(self) -> None:
        ...


__all__ = [
    "Begin",
    "Commit",
    "DecodingParser",
    "Operation",
    "OperationKind",
    "ParsedRecord",
    "ReplicationSource",
    "TransactionContext",
    "WalRecord",
]

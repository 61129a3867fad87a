# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Transaction context of one WAL scan.

Tracks the open transaction and the counters the engine reconciles against
the slot after acknowledgement. A fresh context is created per cycle.
"""

from dataclasses import dataclass

from walsync.cdc.operation import Operation
from walsync.exceptions import DanglingTransaction, TransactionStateError


@dataclass
class TransactionContext:
    """Idle / InTransaction state machine over BEGIN, operation and COMMIT records."""

    last_lsn: str | None = None  # COMMIT lsn of the last closed transaction
    scanned_count: int = 0  # every record, whatever its kind
    tx_count: int = 0
    open_xid: str | None = None

    @property
    def in_transaction(self) -> bool:
        return self.open_xid is not None

    def open_transaction(self, xid: str) -> None:
        if self.open_xid is not None:
            raise TransactionStateError(
                "The current transaction is not committed",
                details={"open_xid": self.open_xid, "xid": xid},
            )
        if xid is None:
            raise TransactionStateError("BEGIN without xid")
        self.open_xid = xid
        self.scanned_count += 1

    def add_operation(self, xid: str, operation: Operation) -> None:
        self._require_open(xid)
        self.scanned_count += 1

    def close_transaction(self, xid: str, lsn: str) -> None:
        self._require_open(xid)
        self.open_xid = None
        self.last_lsn = lsn
        self.tx_count += 1
        self.scanned_count += 1

    def require_idle(self) -> None:
        """Raise if the scan ended inside a transaction."""
        if self.open_xid is not None:
            raise DanglingTransaction(
                "The current transaction is not committed",
                details={"open_xid": self.open_xid},
            )

    def _require_open(self, xid: str) -> None:
        if self.open_xid is None:
            raise TransactionStateError(
                "No transaction is open", details={"xid": xid}
            )
        if xid != self.open_xid:
            raise TransactionStateError(
                f"context xid ({self.open_xid}) <> record xid ({xid})",
                details={"open_xid": self.open_xid, "xid": xid},
            )

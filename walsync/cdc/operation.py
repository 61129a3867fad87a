# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WAL value types - raw slot records and what the parser turns them into.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Sequence, Tuple


class OperationKind(str, Enum):
    """Row-level change carried by a table record."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class WalRecord:
    """One row of pg_logical_slot_peek_changes()."""

    lsn: str  # textual pg_lsn, e.g. "0/16B3748"
    xid: str
    data: str


@dataclass(frozen=True)
class Begin:
    """BEGIN <xid>"""

    xid: str


@dataclass(frozen=True)
class Commit:
    """COMMIT <xid>, with the LSN of the commit record."""

    xid: str
    lsn: str


@dataclass(frozen=True)
class Operation:
    """
    A parsed INSERT/UPDATE/DELETE record.

    column_values keeps the order in which columns appeared in the record.
    reconstruction_query is a SELECT projecting every parsed value (and NULL
    for declared columns the record did not carry) under its column name.
    """

    kind: OperationKind
    table_name: str
    column_values: Mapping[str, str] = field(default_factory=dict)
    reconstruction_query: str = ""

    def __post_init__(self) -> None:
        # Freeze a private copy so the parser's dict can't leak mutations in.
        object.__setattr__(
            self, "column_values", MappingProxyType(dict(self.column_values))
        )

    def id_values(self, columns: Sequence[str]) -> Tuple[str | None, ...]:
        """Values of the given columns, in the given order."""
        return tuple(self.column_values.get(column) for column in columns)


ParsedRecord = Begin | Commit | Operation

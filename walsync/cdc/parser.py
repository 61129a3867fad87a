# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
test_decoding parser - turns one decoded WAL line into a structured record.

The test_decoding output plugin emits three kinds of lines:

    BEGIN 529
    table public.product: INSERT: id[bigint]:1 name[character varying]:'prod1'
    COMMIT 529

Table lines are parsed in two passes: a header pattern for the table and the
operation, then a column pattern applied repeatedly to the rest of the line.
Whatever the column pattern can't consume is a format drift and is reported,
never skipped.
"""

import re
from typing import Callable, Dict, List, Sequence

import structlog

from walsync.cdc.context import TransactionContext
from walsync.cdc.operation import (
    Begin,
    Commit,
    Operation,
    OperationKind,
    ParsedRecord,
    WalRecord,
)
from walsync.exceptions import (
    ProtocolMismatch,
    TrailingGarbage,
    UnknownOperation,
    UnrecognizedRecordFormat,
    UnsupportedRecordContent,
)

logger = structlog.get_logger()

BEGIN_PREFIX = "BEGIN "
COMMIT_PREFIX = "COMMIT "
TABLE_PREFIX = "table "

# table public.product: UPDATE: <columns>
TABLE_OPERATION_PATTERN = re.compile(
    r"table (?P<table>[^:]+): (?P<operation>[^:\s]+):(?: |$)"
)

# name[character varying]:'prod1'  or  id[bigint]:1  or  tags[text[]]:'{a,b}'
COLUMN_TYPE_VALUE_PATTERN = re.compile(
    r"(?P<column>\"(?:[^\"]|\"\")*\"|[^\[\s,\"]+)"
    r"\[(?P<type>(?:[^\[\]]|\[\])+)\]"
    r":(?P<value>'(?:[^']|'')*'|[^'\s,][^\s,]*)"
    r"(?:,?\s|$)"
)

COLUMN_DELIM = ", "

# UPDATE that changes the key (or any UPDATE under REPLICA IDENTITY FULL)
OLD_KEY_PREFIX = "old-key:"
# TOAST value not rewritten by the UPDATE; the record doesn't carry it
UNCHANGED_TOAST = "unchanged-toast-datum"


def _strip_schema(qualified_name: str) -> str:
    """public.product -> product"""
    _, dot, name = qualified_name.partition(".")
    return name if dot else qualified_name


def _unquote(value: str) -> str:
    """Remove the outer quotes of a literal; the inside is left as-is."""
    if len(value) >= 2 and value[0] == "'" and value[-1] == "'":
        return value[1:-1]
    return value


class DecodingParser:
    """
    Parser for test_decoding records.

    Args:
        non_id_columns: Returns the declared non-id columns of a table. Used to
            add NULL projections for columns a record does not carry (a DELETE
            only carries the primary key).
    """

    def __init__(
        self,
        non_id_columns: Callable[[str], Sequence[str]] | None = None,
    ) -> None:
        self._non_id_columns = non_id_columns or (lambda table_name: ())

    def parse(
        self,
        record: WalRecord,
        context: TransactionContext | None = None,
    ) -> ParsedRecord:
        """
        Parse one WAL record.

        Returns:
            Begin, Commit or Operation

        Raises:
            ProtocolMismatch: BEGIN/COMMIT xid differs from the record's xid
            UnknownOperation: table record with an unsupported operation
            TrailingGarbage: table record with unparseable columns
            UnrecognizedRecordFormat: anything else
        """
        data = record.data

        if data.startswith(BEGIN_PREFIX):
            xid = data[len(BEGIN_PREFIX):]
            self._check_xid("BEGIN", xid, record)
            return Begin(xid=xid)

        if data.startswith(COMMIT_PREFIX):
            xid = data[len(COMMIT_PREFIX):]
            self._check_xid("COMMIT", xid, record)
            return Commit(xid=xid, lsn=record.lsn)

        if data.startswith(TABLE_PREFIX):
            return self.parse_table_record(data, context)

        raise UnrecognizedRecordFormat(
            "Unexpected WAL record format",
            details={"lsn": record.lsn, "xid": record.xid, "data": data},
        )

    def parse_table_record(
        self,
        data: str,
        context: TransactionContext | None = None,
    ) -> Operation:
        """Parse the data column of an INSERT/UPDATE/DELETE record."""
        header = TABLE_OPERATION_PATTERN.match(data)
        if header is None:
            raise UnrecognizedRecordFormat(
                "Could not find the table name or the operation",
                details={"data": data},
            )

        table_name = _strip_schema(header.group("table"))
        try:
            kind = OperationKind(header.group("operation"))
        except ValueError:
            raise UnknownOperation(
                f"Unknown operation [{header.group('operation')}]",
                details={"data": data},
            )

        xid = context.open_xid if context is not None else None
        rest = data[header.end():]
        if rest.startswith(OLD_KEY_PREFIX):
            raise UnsupportedRecordContent(
                "Record carries the old key; key-changing updates can't be reconstructed",
                details={"table": table_name, "data": data},
            )
        column_values: Dict[str, str] = {}
        projections: List[str] = []

        pos = 0
        while pos < len(rest):
            match = COLUMN_TYPE_VALUE_PATTERN.match(rest, pos)
            if match is None:
                break
            column = match.group("column")
            literal = match.group("value")
            if literal == UNCHANGED_TOAST:
                raise UnsupportedRecordContent(
                    f"Column {column} is an unchanged TOAST value",
                    details={"table": table_name, "column": column, "data": data},
                )
            value = _unquote(literal)
            projections.append(f"{literal} AS {column}")
            column_values[column] = value
            logger.debug(
                "wal_column_parsed",
                xid=xid,
                table=table_name,
                column=column,
                type=match.group("type"),
                value=value,
            )
            pos = match.end()

        if pos != len(rest):
            raise TrailingGarbage(
                "Unexpected tail",
                details={"tail": rest[pos:], "data": data},
            )

        # DELETE records carry only the key; the rest of the row comes back as NULL.
        for column in self._non_id_columns(table_name):
            if column not in column_values:
                projections.append(f"NULL AS {column}")

        return Operation(
            kind=kind,
            table_name=table_name,
            column_values=column_values,
            reconstruction_query="SELECT " + COLUMN_DELIM.join(projections),
        )

    @staticmethod
    def _check_xid(marker: str, xid: str, record: WalRecord) -> None:
        if xid != record.xid:
            raise ProtocolMismatch(
                f"record xid [{record.xid}] <> xid from {marker} [{xid}]",
                details={"lsn": record.lsn, "data": record.data},
            )

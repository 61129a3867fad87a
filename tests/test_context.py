# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Transaction context tests: record counting and BEGIN/COMMIT pairing.
"""

import pytest

from walsync.cdc.context import TransactionContext
from walsync.cdc.operation import Operation, OperationKind
from walsync.exceptions import DanglingTransaction, TransactionStateError

OP = Operation(kind=OperationKind.INSERT, table_name="product")


def test_full_transaction_counts_every_record():
    context = TransactionContext()
    context.open_transaction("529")
    context.add_operation("529", OP)
    context.add_operation("529", OP)
    context.close_transaction("529", "0/16B3900")

    assert context.scanned_count == 4
    assert context.tx_count == 1
    assert context.last_lsn == "0/16B3900"
    assert not context.in_transaction
    context.require_idle()


def test_last_lsn_follows_latest_commit():
    context = TransactionContext()
    for xid, lsn in (("1", "0/10"), ("2", "0/20")):
        context.open_transaction(xid)
        context.close_transaction(xid, lsn)
    assert context.last_lsn == "0/20"
    assert context.tx_count == 2


def test_nested_begin_is_rejected():
    context = TransactionContext()
    context.open_transaction("529")
    with pytest.raises(TransactionStateError):
        context.open_transaction("530")


def test_operation_outside_transaction():
    with pytest.raises(TransactionStateError):
        TransactionContext().add_operation("529", OP)


def test_commit_outside_transaction():
    with pytest.raises(TransactionStateError):
        TransactionContext().close_transaction("529", "0/10")


def test_operation_from_another_transaction():
    """Records of two transactions must never interleave."""
    context = TransactionContext()
    context.open_transaction("529")
    with pytest.raises(TransactionStateError) as exc_info:
        context.add_operation("530", OP)
    assert exc_info.value.message == "context xid (529) <> record xid (530)"


def test_commit_of_another_transaction():
    context = TransactionContext()
    context.open_transaction("529")
    with pytest.raises(TransactionStateError):
        context.close_transaction("530", "0/10")
    assert context.last_lsn is None


def test_scan_ending_inside_transaction_is_dangling():
    context = TransactionContext()
    context.open_transaction("529")
    context.add_operation("529", OP)
    with pytest.raises(DanglingTransaction):
        context.require_idle()

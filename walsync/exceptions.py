# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
walsync Exceptions - Custom exceptions for the walsync package.

Cycle-level failures derive from CycleFailure. Anything raised while a cycle
runs aborts it before the slot is acknowledged, so the same WAL span is
scanned again on the next cycle.
"""


class WalSyncError(Exception):
    """Base exception for all walsync errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(WalSyncError):
    """Raised when configuration is invalid."""

    pass


class SlotError(WalSyncError):
    """Raised when the replication slot is missing or has the wrong shape."""

    pass


class RegistryError(WalSyncError):
    """Raised when entity mappings or sink registrations are inconsistent."""

    pass


class UnsupportedSchemaShape(RegistryError):
    """An entity does not map to a single physical table. Reported, not raised."""

    pass


class NoSinkRegistered(RegistryError):
    """A mapped table has no sink for its entity type. Reported, not raised."""

    pass


class CycleFailure(WalSyncError):
    """Raised when a CDC cycle cannot complete consistently."""

    pass


class ProtocolError(CycleFailure):
    """The decoded WAL does not follow the supported format or transaction rules."""

    pass


class ProtocolMismatch(ProtocolError):
    """The xid in a BEGIN/COMMIT line differs from the record's xid."""

    pass


class UnknownOperation(ProtocolError):
    """A table record carries an operation other than INSERT, UPDATE or DELETE."""

    pass


class TrailingGarbage(ProtocolError):
    """Column parsing stopped before the end of the record."""

    pass


class UnrecognizedRecordFormat(ProtocolError):
    """A record is neither BEGIN, COMMIT nor a table change."""

    pass


class UnsupportedRecordContent(ProtocolError):
    """A table record uses a test_decoding form that can't be reconstructed."""

    pass


class DanglingTransaction(ProtocolError):
    """The scan ended with a transaction still open."""

    pass


class TransactionStateError(ProtocolError):
    """A BEGIN/operation/COMMIT arrived in a state that does not allow it."""

    pass


class ConsistencyError(CycleFailure):
    """Raised when scanned and acknowledged WAL disagree. Needs an operator."""

    pass


class AcknowledgementMismatch(ConsistencyError):
    """The slot discarded a different number of records than were scanned."""

    pass


class EngineHalted(ConsistencyError):
    """Cycles are refused until an operator resumes the engine."""

    pass


class CycleInProgress(CycleFailure):
    """Another cycle is already consuming the slot."""

    pass


class ReconstructionError(CycleFailure):
    """The reconstruction query did not produce a row."""

    pass


class CycleTimeout(WalSyncError):
    """The caller stopped waiting; the cycle is still in flight."""

    pass


class SchedulerStopped(WalSyncError):
    """Raised for triggers that were queued when the scheduler stopped."""

    pass

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
walsync Core - Main orchestrator functions for CDC cycles.

A cycle peeks every pending record of the replication slot, parses it,
drives the transaction context, dispatches each operation to its sink as
soon as it is parsed, and finally consumes exactly the scanned span from the
slot. The number of consumed records must equal the number scanned; anything
else means a record was skipped, seen twice, or consumed by someone else.

Cycles must never overlap. Run them through walsync.scheduler.CycleScheduler.
A second run_cdc_cycle() on the same state while one is running raises
CycleInProgress, and anything else that peeks the slot waits on slot_lock.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Iterable, Sequence, TypedDict

import aiosqlite
import structlog
from ulid import ULID

from walsync.cdc import ReplicationSource
from walsync.cdc.context import TransactionContext
from walsync.cdc.operation import Begin, Commit, Operation, OperationKind
from walsync.cdc.parser import DecodingParser
from walsync.config import CDCConfig
from walsync.errors import explain_engine_halted
from walsync.exceptions import (
    AcknowledgementMismatch,
    CycleInProgress,
    EngineHalted,
    ReconstructionError,
)
from walsync.journal import complete_cycle, init_journal_db, record_cycle_start
from walsync.registry import EntityMapping, EntityRegistry, build_registry
from walsync.sinks import SinkAdapter

logger = structlog.get_logger()

DISPATCHED = "dispatched"
SKIPPED = "skipped"


@dataclass
class CycleResult:
    """Result of one CDC cycle."""

    cycle_id: str  # ULID
    transactions: int
    scanned_records: int
    acknowledged_records: int
    dispatched: int
    skipped: int
    last_lsn: str | None
    duration_seconds: float


@dataclass
class CDCMetrics:
    """Metrics for CDC cycles."""

    total_cycles: int
    failed_cycles: int
    total_transactions: int
    total_records: int
    total_dispatched: int
    total_skipped: int
    last_run_at: datetime | None
    last_error: str | None
    halted_reason: str | None
    pending_records: int | None


class CDCState(TypedDict):
    """Runtime state of the CDC engine."""

    slot_name: str
    source: ReplicationSource
    registry: EntityRegistry
    parser: DecodingParser
    journal_db_path: Path | None
    last_run_at: datetime | None
    total_cycles: int
    failed_cycles: int
    total_transactions: int
    total_records: int
    total_dispatched: int
    total_skipped: int
    last_error: str | None
    halted_reason: str | None
    slot_lock: asyncio.Lock
    cycle_running: bool


async def initialize_cdc_state(
    config: CDCConfig,
    mappings: Iterable[EntityMapping],
    sinks: Sequence[SinkAdapter],
    source: ReplicationSource | None = None,
) -> CDCState:
    """
    Initialize runtime state for the CDC engine.

    Builds the entity registry, connects to the replication slot (unless a
    source is supplied) and prepares the cycle journal.

    Args:
        config: walsync configuration
        mappings: Static entity mappings
        sinks: Sink adapters, in registration order
        source: Replication source to use instead of connecting to PostgreSQL

    Returns:
        Initialized CDCState dictionary

    Raises:
        RegistryError: If the mappings or sinks are inconsistent
        SlotError: If the replication slot is unusable
    """
    registry = build_registry(mappings, sinks)
    parser = DecodingParser(registry.non_id_columns)

    if source is None:
        from walsync.cdc.postgres import connect_slot

        source = await connect_slot(
            config.connection_url,
            config.slot_name,
            create=config.create_slot,
            prefetch=config.cursor_prefetch,
        )

    if config.journal_path is not None:
        await init_journal_db(config.journal_path)

    logger.info(
        "cdc_state_initialized",
        slot_name=config.slot_name,
        tables=registry.tables,
        skipped_entities=len(registry.skipped),
    )

    return CDCState(
        slot_name=config.slot_name,
        source=source,
        registry=registry,
        parser=parser,
        journal_db_path=config.journal_path,
        last_run_at=None,
        total_cycles=0,
        failed_cycles=0,
        total_transactions=0,
        total_records=0,
        total_dispatched=0,
        total_skipped=0,
        last_error=None,
        halted_reason=None,
        slot_lock=asyncio.Lock(),
        cycle_running=False,
    )


async def run_cdc_cycle(state: CDCState) -> CycleResult:
    """
    Run one scan-and-acknowledge cycle.

    1. Peek all pending WAL records through a forward-only cursor
    2. Parse each record and drive the transaction context
    3. Dispatch every operation to its sink as soon as it is parsed
    4. Require that no transaction is left open
    5. Consume the records up to the last COMMIT and compare counts

    Args:
        state: Runtime state

    Returns:
        CycleResult; ``transactions`` is the number of committed
        transactions processed

    Raises:
        CycleFailure: On any protocol or consistency error. The slot is not
            acknowledged, so the same records are scanned again next cycle.
        EngineHalted: If a previous cycle hit AcknowledgementMismatch
        CycleInProgress: If another cycle on this state has not finished
    """
    if state["halted_reason"]:
        raise EngineHalted(explain_engine_halted(state["halted_reason"]))
    if state["cycle_running"]:
        raise CycleInProgress(
            "Cycle already running", details={"slot_name": state["slot_name"]}
        )

    state["cycle_running"] = True
    try:
        async with state["slot_lock"]:
            return await _scan_and_acknowledge(state)
    finally:
        state["cycle_running"] = False


async def _scan_and_acknowledge(state: CDCState) -> CycleResult:
    cycle_id = str(ULID())
    start_time = datetime.now(UTC)
    source = state["source"]
    parser = state["parser"]
    context = TransactionContext()
    dispatched = 0
    skipped = 0

    logger.debug("cdc_cycle_started", cycle_id=cycle_id, slot_name=state["slot_name"])
    await _journal_start(state, cycle_id)

    try:
        async with source.peek_changes() as records:
            async for record in records:
                parsed = parser.parse(record, context)
                if isinstance(parsed, Begin):
                    context.open_transaction(parsed.xid)
                elif isinstance(parsed, Commit):
                    context.close_transaction(parsed.xid, parsed.lsn)
                else:
                    context.add_operation(record.xid, parsed)
                    outcome = await dispatch_operation(state, parsed)
                    if outcome == DISPATCHED:
                        dispatched += 1
                    else:
                        skipped += 1

        context.require_idle()
        logger.debug(
            "cdc_scan_finished",
            cycle_id=cycle_id,
            transactions=context.tx_count,
            last_lsn=context.last_lsn,
        )

        # Nothing committed means nothing to consume. A NULL upper bound
        # would consume records that arrived after the scan.
        acknowledged = 0
        if context.last_lsn is not None:
            acknowledged = await source.acknowledge(context.last_lsn)

        if acknowledged != context.scanned_count:
            raise AcknowledgementMismatch(
                f"Scanned records ({context.scanned_count}) <> "
                f"cleaned records ({acknowledged})",
                details={"cycle_id": cycle_id, "last_lsn": context.last_lsn},
            )

    except AcknowledgementMismatch as e:
        state["halted_reason"] = str(e)
        await _record_failure(state, cycle_id, context, e)
        raise
    except Exception as e:
        await _record_failure(state, cycle_id, context, e)
        raise

    duration = (datetime.now(UTC) - start_time).total_seconds()

    result = CycleResult(
        cycle_id=cycle_id,
        transactions=context.tx_count,
        scanned_records=context.scanned_count,
        acknowledged_records=acknowledged,
        dispatched=dispatched,
        skipped=skipped,
        last_lsn=context.last_lsn,
        duration_seconds=duration,
    )

    state["last_run_at"] = datetime.now(UTC)
    state["total_cycles"] += 1
    state["total_transactions"] += result.transactions
    state["total_records"] += result.scanned_records
    state["total_dispatched"] += dispatched
    state["total_skipped"] += skipped

    await _journal_complete(state, cycle_id, asdict(result))

    logger.info(
        "cdc_cycle_completed",
        cycle_id=cycle_id,
        transactions=result.transactions,
        records=result.scanned_records,
        dispatched=dispatched,
        skipped=skipped,
        last_lsn=result.last_lsn,
        duration=duration,
    )
    return result


async def dispatch_operation(state: CDCState, op: Operation) -> str:
    """
    Rebuild the entity touched by an operation and hand it to its sink.

    Tables that are not registered, and entity types without a sink, are
    outside the synchronised part of the schema: they are logged and skipped.

    Returns:
        "dispatched" or "skipped"

    Raises:
        ReconstructionError: If the reconstruction query returns no row
    """
    registry = state["registry"]

    entry = registry.resolve_by_table(op.table_name)
    if entry is None:
        logger.debug("operation_skipped_unknown_table", table=op.table_name)
        return SKIPPED

    sink = registry.sink_for(entry.entity_type)
    if sink is None:
        logger.debug(
            "operation_skipped_no_sink",
            table=op.table_name,
            entity_type=entry.entity_type.__name__,
        )
        return SKIPPED

    # Only the columns stored in this table are restored.
    row = await state["source"].fetch_row(op.reconstruction_query)
    if row is None:
        raise ReconstructionError(
            "Reconstruction query returned no row",
            details={"table": op.table_name, "query": op.reconstruction_query},
        )
    entity = registry.materialize(entry, row)

    if op.kind is OperationKind.INSERT:
        await sink.create(entity)
    elif op.kind is OperationKind.UPDATE:
        await sink.update(entity)
    elif op.kind is OperationKind.DELETE:
        await sink.delete(entity)
    else:
        raise ValueError(op.kind)

    logger.debug(
        "operation_dispatched",
        table=op.table_name,
        kind=op.kind.value,
        entity_id=op.id_values(entry.id_columns),
    )
    return DISPATCHED


def resume_cdc(state: CDCState) -> None:
    """Clear a halt after an operator has checked the slot."""
    if state["halted_reason"]:
        logger.warning("cdc_engine_resumed", halted_reason=state["halted_reason"])
    state["halted_reason"] = None


async def get_pending_count(state: CDCState) -> int:
    """
    Number of records waiting in the replication slot.

    Counting peeks the slot, so it waits for a running cycle to finish.
    """
    async with state["slot_lock"]:
        return await state["source"].pending_count()


async def get_metrics(state: CDCState) -> CDCMetrics:
    """Get current CDC metrics. pending_records is None while a cycle runs."""
    pending: int | None = None
    if state["slot_lock"].locked():
        logger.debug("pending_count_skipped_cycle_running", slot_name=state["slot_name"])
    else:
        try:
            pending = await get_pending_count(state)
        except Exception as e:
            logger.warning("pending_count_failed", error=str(e))

    return CDCMetrics(
        total_cycles=state["total_cycles"],
        failed_cycles=state["failed_cycles"],
        total_transactions=state["total_transactions"],
        total_records=state["total_records"],
        total_dispatched=state["total_dispatched"],
        total_skipped=state["total_skipped"],
        last_run_at=state["last_run_at"],
        last_error=state["last_error"],
        halted_reason=state["halted_reason"],
        pending_records=pending,
    )


async def shutdown_cdc_state(state: CDCState) -> None:
    """Cleanup resources."""
    try:
        await state["source"].close()
    except Exception as e:
        logger.warning("replication_source_close_failed", error=str(e))

    logger.info("cdc_state_shutdown_complete")


async def _record_failure(
    state: CDCState,
    cycle_id: str,
    context: TransactionContext,
    error: Exception,
) -> None:
    state["last_error"] = str(error)
    state["failed_cycles"] += 1

    logger.error(
        "cdc_cycle_failed",
        cycle_id=cycle_id,
        error=str(error),
        error_type=type(error).__name__,
        scanned=context.scanned_count,
        open_xid=context.open_xid,
    )

    stats = {
        "scanned_records": context.scanned_count,
        "transactions": context.tx_count,
        "last_lsn": context.last_lsn,
    }
    try:
        await _journal_complete(state, cycle_id, stats, error=str(error))
    except Exception as journal_error:
        # The cycle error is the one the caller needs to see.
        logger.warning(
            "journal_write_failed", cycle_id=cycle_id, error=str(journal_error)
        )


async def _journal_start(state: CDCState, cycle_id: str) -> None:
    if state["journal_db_path"] is None:
        return
    async with aiosqlite.connect(state["journal_db_path"]) as db:
        await record_cycle_start(db, cycle_id, state["slot_name"])


async def _journal_complete(
    state: CDCState,
    cycle_id: str,
    stats: dict,
    error: str | None = None,
) -> None:
    if state["journal_db_path"] is None:
        return
    async with aiosqlite.connect(state["journal_db_path"]) as db:
        await complete_cycle(db, cycle_id, stats, error)

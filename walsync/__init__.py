# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
walsync - Keep a search index in sync with PostgreSQL through logical decoding.

Reads the test_decoding output of a logical replication slot, rebuilds the
changed entities from the WAL itself and hands them to index sinks. Each
cycle acknowledges exactly what it scanned, so the slot doubles as the
durable cursor of the synchronisation. Package name: walsync.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from walsync.builder import create_config

# Core functions
from walsync.core import (
    CycleResult,
    initialize_cdc_state,
    run_cdc_cycle,
    resume_cdc,
    get_metrics,
    shutdown_cdc_state,
)

# Environment-based configuration
from walsync.env import create_config_from_env

from walsync.exceptions import (
    AcknowledgementMismatch,
    ConfigurationError,
    CycleFailure,
    CycleInProgress,
    CycleTimeout,
    WalSyncError,
)
from walsync.registry import EntityMapping, build_registry
from walsync.scheduler import CycleScheduler, synced_write
from walsync.sinks import InMemoryIndexSink, SinkAdapter

__all__ = [
    # Version
    "__version__",
    # Configuration creation (primary user-facing APIs)
    "create_config",
    "create_config_from_env",
    # Registration
    "EntityMapping",
    "build_registry",
    "SinkAdapter",
    "InMemoryIndexSink",
    # Core orchestration functions
    "CycleResult",
    "initialize_cdc_state",
    "run_cdc_cycle",
    "resume_cdc",
    "get_metrics",
    "shutdown_cdc_state",
    # Serialized cycles
    "CycleScheduler",
    "synced_write",
    # Errors
    "WalSyncError",
    "ConfigurationError",
    "CycleFailure",
    "CycleInProgress",
    "CycleTimeout",
    "AcknowledgementMismatch",
]

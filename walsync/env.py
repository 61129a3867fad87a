# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

A small, convenient wrapper around create_config() that reads the database
URL and engine settings from environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path

from walsync.builder import create_config
from walsync.config import DEFAULT_CYCLE_TIMEOUT_SECONDS, DEFAULT_SLOT_NAME, CDCConfig
from walsync.errors import (
    explain_invalid_bool_env,
    explain_invalid_catch_up_interval_env,
    explain_invalid_cycle_timeout_env,
    explain_missing_database_url_env,
)
from walsync.exceptions import ConfigurationError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_positive_seconds(value: str | None, explain) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain(value)) from exc
    if seconds <= 0:
        raise ConfigurationError(explain(value))
    return seconds


def _parse_bool(name: str, value: str | None) -> bool:
    if not value:
        return False
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(explain_invalid_bool_env(name, value))


def create_config_from_env() -> CDCConfig:
    """
    Create a CDCConfig from environment variables.

    Required:
        - DATABASE_URL: PostgreSQL URL of the system-of-record

    Optional environment variables:
        - WALSYNC_SLOT_NAME: Replication slot (default: elk_slot)
        - WALSYNC_CYCLE_TIMEOUT: Seconds a writer waits for its cycle (default: 10)
        - WALSYNC_CREATE_SLOT: Create the slot when missing (default: false)
        - WALSYNC_JOURNAL_PATH: SQLite file recording every cycle
        - WALSYNC_CATCH_UP_INTERVAL: Seconds between catch-up cycles
    """

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        raise ConfigurationError(explain_missing_database_url_env())

    slot_name = os.getenv("WALSYNC_SLOT_NAME", DEFAULT_SLOT_NAME)
    cycle_timeout = _parse_positive_seconds(
        os.getenv("WALSYNC_CYCLE_TIMEOUT"), explain_invalid_cycle_timeout_env
    )
    catch_up_interval = _parse_positive_seconds(
        os.getenv("WALSYNC_CATCH_UP_INTERVAL"), explain_invalid_catch_up_interval_env
    )
    create_slot = _parse_bool("WALSYNC_CREATE_SLOT", os.getenv("WALSYNC_CREATE_SLOT"))
    journal_path_env = os.getenv("WALSYNC_JOURNAL_PATH")

    return create_config(
        db_url,
        slot_name=slot_name,
        cycle_timeout_seconds=cycle_timeout or DEFAULT_CYCLE_TIMEOUT_SECONDS,
        create_slot=create_slot,
        journal_path=Path(journal_path_env) if journal_path_env else None,
        catch_up_interval_seconds=catch_up_interval,
    )

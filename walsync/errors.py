# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for walsync.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_missing_database_url_env() -> str:
    """
    Explain that the database URL environment variable is missing.
    """

    return (
        "Database is not configured. "
        "Set the DATABASE_URL environment variable or pass connection_url=... to create_config()."
    )


def explain_invalid_cycle_timeout_env(value: str | None) -> str:
    """
    Explain that WALSYNC_CYCLE_TIMEOUT is invalid.
    """

    return (
        f"Invalid WALSYNC_CYCLE_TIMEOUT value: {value!r}. "
        "It must be a positive number of seconds."
    )


def explain_invalid_catch_up_interval_env(value: str | None) -> str:
    """
    Explain that WALSYNC_CATCH_UP_INTERVAL is invalid.
    """

    return (
        f"Invalid WALSYNC_CATCH_UP_INTERVAL value: {value!r}. "
        "It must be a positive number of seconds, or unset to disable catch-up cycles."
    )


def explain_invalid_bool_env(name: str, value: str | None) -> str:
    return (
        f"Invalid {name} value: {value!r}. "
        "Expected one of: 'true', 'false', '1', '0', 'yes', 'no'."
    )


def explain_cycle_timeout() -> str:
    """
    Explain what to do when a writer gave up waiting for its cycle.
    """

    return (
        "The CDC cycle did not finish in time and is still running. "
        "Increase cycle_timeout_seconds and trigger a cycle again without new writes."
    )


def explain_engine_halted(reason: str | None) -> str:
    """
    Explain why cycles are refused after a consistency failure.
    """

    return (
        f"CDC engine is halted after a consistency failure: {reason}. "
        "Check that no other consumer uses the replication slot, then resume the engine."
    )

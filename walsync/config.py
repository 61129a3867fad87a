# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
walsync Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while cycles are running.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List
import re

DEFAULT_SLOT_NAME = "elk_slot"
DEFAULT_CYCLE_TIMEOUT_SECONDS = 10.0


def _validate_slot_name(slot_name: str) -> bool:
    """
    Validate a replication slot name according to PostgreSQL rules.

    Rules:
    - 1-63 characters
    - Lowercase letters, numbers and underscores only
    """
    if not slot_name or len(slot_name) > 63:
        return False
    return re.match(r"^[a-z0-9_]+$", slot_name) is not None


def _validate_connection_url(url: str) -> bool:
    """Only PostgreSQL URLs can carry a logical replication slot."""
    return url.lower().startswith(("postgres://", "postgresql://"))


@dataclass(frozen=True)
class CDCConfig:
    """
    Immutable configuration for the CDC engine.

    This configuration is frozen after creation so the single cycle worker
    and the admin endpoints can share it without locking.
    """

    # Required: PostgreSQL connection URL
    connection_url: str

    # Replication slot using the test_decoding plugin
    slot_name: str = DEFAULT_SLOT_NAME

    # How long a writer waits for the cycle that follows its write
    cycle_timeout_seconds: float = DEFAULT_CYCLE_TIMEOUT_SECONDS

    # Create the slot at startup when it does not exist
    create_slot: bool = False

    # SQLite journal of cycle outcomes (disabled when None)
    journal_path: Path | None = None

    # Run a catch-up cycle every N seconds (disabled when None)
    catch_up_interval_seconds: float | None = None

    # Rows fetched per round trip by the WAL cursor
    cursor_prefetch: int = 100

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not self.connection_url or not _validate_connection_url(self.connection_url):
            errors.append("connection_url must be a postgres:// or postgresql:// URL")

        if not _validate_slot_name(self.slot_name):
            errors.append(f"Invalid slot_name: {self.slot_name!r}")

        if self.cycle_timeout_seconds <= 0:
            errors.append(
                f"cycle_timeout_seconds must be > 0, got {self.cycle_timeout_seconds}"
            )

        if self.catch_up_interval_seconds is not None and self.catch_up_interval_seconds <= 0:
            errors.append(
                "catch_up_interval_seconds must be > 0, "
                f"got {self.catch_up_interval_seconds}"
            )

        if self.cursor_prefetch < 1:
            errors.append(f"cursor_prefetch must be >= 1, got {self.cursor_prefetch}")

        # Raise all errors at once
        if errors:
            from walsync.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    def with_updates(self, **kwargs) -> "CDCConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return CDCConfig(**current)

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
walsync Entity Registry - which tables are synchronised, and where to.

The registry is built once at startup from a static registration table of
EntityMapping values (one per entity type) and the list of sink adapters.
It answers three questions for the engine:

- which entity type a WAL table belongs to, and its id / non-id columns
- which non-id columns the parser must complete with NULL
- which sink receives entities of a given type

Tables without a sink are left out rather than rejected: CDC only covers the
part of the schema that is mirrored in the index. After build() the registry
is frozen and shared read-only by the engine's single worker.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, List, Mapping, Sequence, Tuple

import structlog

from walsync.exceptions import NoSinkRegistered, RegistryError, UnsupportedSchemaShape
from walsync.sinks import SinkAdapter

logger = structlog.get_logger()

RowFactory = Callable[[Mapping[str, Any]], Any]


@dataclass(frozen=True)
class EntityMapping:
    """
    Static description of how an entity type is stored.

    Attributes:
        entity_type: Class of the entity (also used for sink lookup)
        table: Physical table name, without schema
        id_columns: Primary key columns, in key order
        non_id_columns: Every other persisted column, in declaration order
        secondary_tables: Extra tables the entity spans (joined inheritance,
            secondary tables). Such entities can't be rebuilt from one WAL
            record and are skipped.
        factory: Builds the entity from a reconstructed row; defaults to
            ``entity_type(**row)``
    """

    entity_type: type
    table: str
    id_columns: Tuple[str, ...]
    non_id_columns: Tuple[str, ...]
    secondary_tables: Tuple[str, ...] = ()
    factory: RowFactory | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "id_columns", tuple(self.id_columns))
        object.__setattr__(self, "non_id_columns", tuple(self.non_id_columns))
        object.__setattr__(self, "secondary_tables", tuple(self.secondary_tables))

        if not self.table:
            raise RegistryError(
                "table is required", details={"entity_type": self.entity_type.__name__}
            )
        if not self.id_columns:
            raise RegistryError(
                "At least one id column is required",
                details={"table": self.table},
            )
        overlap = set(self.id_columns) & set(self.non_id_columns)
        if overlap:
            raise RegistryError(
                "Columns cannot be both id and non-id",
                details={"table": self.table, "columns": sorted(overlap)},
            )


@dataclass(frozen=True)
class RegistryEntry:
    """A synchronised table."""

    table_name: str
    entity_type: type
    id_columns: Tuple[str, ...]
    non_id_columns: Tuple[str, ...]
    factory: RowFactory | None = None


@dataclass(frozen=True)
class EntityRegistry:
    """Immutable table -> entity -> sink lookup."""

    entries: Mapping[str, RegistryEntry] = field(default_factory=dict)
    sinks: Tuple[Tuple[type, SinkAdapter], ...] = ()
    skipped: Tuple[RegistryError, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))
        object.__setattr__(self, "sinks", tuple(self.sinks))
        object.__setattr__(self, "skipped", tuple(self.skipped))

    def resolve_by_table(self, table_name: str) -> RegistryEntry | None:
        return self.entries.get(table_name)

    def non_id_columns(self, table_name: str) -> Tuple[str, ...]:
        """Declared non-id columns of a table; empty if the table is unknown."""
        entry = self.entries.get(table_name)
        return entry.non_id_columns if entry is not None else ()

    def sink_for(self, entity_type: type) -> SinkAdapter | None:
        """
        Find the sink for an entity type.

        Exact match first, then the first registered sink whose type is a
        supertype of entity_type. When two supertype sinks qualify, the one
        registered first wins.
        """
        for sink_type, sink in self.sinks:
            if sink_type is entity_type:
                return sink
        for sink_type, sink in self.sinks:
            if issubclass(entity_type, sink_type):
                return sink
        return None

    def materialize(self, entry: RegistryEntry, row: Mapping[str, Any]) -> Any:
        """Build an entity from a reconstructed row."""
        if entry.factory is not None:
            return entry.factory(row)
        return entry.entity_type(**row)

    @property
    def tables(self) -> List[str]:
        return sorted(self.entries)


def build_registry(
    mappings: Iterable[EntityMapping],
    sinks: Sequence[SinkAdapter],
) -> EntityRegistry:
    """
    Build the registry from static mappings and sink adapters.

    Args:
        mappings: One EntityMapping per entity type
        sinks: Sink adapters, in registration order (used for tie-breaks)

    Returns:
        Frozen EntityRegistry

    Raises:
        RegistryError: If two mappings claim the same table, or two sinks
            declare the same entity type
    """
    skipped: List[RegistryError] = []

    candidates: dict[str, EntityMapping] = {}
    for mapping in mappings:
        if mapping.secondary_tables:
            warning = UnsupportedSchemaShape(
                f"{mapping.entity_type.__name__} does not map to a single table",
                details={
                    "table": mapping.table,
                    "secondary_tables": list(mapping.secondary_tables),
                },
            )
            logger.warning(
                "entity_skipped_unsupported_shape",
                entity_type=mapping.entity_type.__name__,
                table=mapping.table,
            )
            skipped.append(warning)
            continue
        if mapping.table in candidates:
            raise RegistryError(
                f"Table [{mapping.table}] is mapped twice",
                details={
                    "entity_types": [
                        candidates[mapping.table].entity_type.__name__,
                        mapping.entity_type.__name__,
                    ]
                },
            )
        candidates[mapping.table] = mapping

    mapped_types = [mapping.entity_type for mapping in candidates.values()]

    registered: List[Tuple[type, SinkAdapter]] = []
    for sink in sinks:
        sink_type = sink.entity_type
        if any(existing is sink_type for existing, _ in registered):
            raise RegistryError(
                f"Two sinks are registered for {sink_type.__name__}",
            )
        if not any(issubclass(entity_type, sink_type) for entity_type in mapped_types):
            logger.warning(
                "sink_skipped_no_mapping",
                entity_type=sink_type.__name__,
            )
            continue
        registered.append((sink_type, sink))

    registry_sinks = EntityRegistry(sinks=tuple(registered))

    entries: dict[str, RegistryEntry] = {}
    for table, mapping in candidates.items():
        if registry_sinks.sink_for(mapping.entity_type) is None:
            skipped.append(
                NoSinkRegistered(
                    f"{mapping.entity_type.__name__} has no sink",
                    details={"table": table},
                )
            )
            logger.warning(
                "entity_skipped_no_sink",
                entity_type=mapping.entity_type.__name__,
                table=table,
            )
            continue
        entries[table] = RegistryEntry(
            table_name=table,
            entity_type=mapping.entity_type,
            id_columns=mapping.id_columns,
            non_id_columns=mapping.non_id_columns,
            factory=mapping.factory,
        )

    for table, entry in entries.items():
        logger.debug(
            "entity_registered", table=table, entity_type=entry.entity_type.__name__
        )

    return EntityRegistry(entries=entries, sinks=tuple(registered), skipped=tuple(skipped))

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Sink adapters - where reconstructed entities end up.

A sink is registered for an entity type and receives create/update/delete
calls from the engine. Dispatch is at-least-once: a cycle that fails after
dispatching part of a transaction re-dispatches the whole span on retry.
Sinks must therefore behave as idempotent upserts and deletes keyed by the
entity's primary key.
"""

from typing import Any, Callable, Dict, Hashable, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger()


@runtime_checkable
class SinkAdapter(Protocol):
    """Protocol every index sink must satisfy."""

    @property
    def entity_type(self) -> type:
        """Entity type this sink accepts (subclasses are accepted too)."""
        ...

    async def create(self, entity: Any) -> None:
        ...

    async def update(self, entity: Any) -> None:
        ...

    async def delete(self, entity: Any) -> None:
        ...


class InMemoryIndexSink:
    """
    Dictionary-backed index keyed by the entity's primary key.

    Useful for tests and local development. Documents are produced by
    ``to_document`` (defaults to the entity's ``__dict__``).
    """

    def __init__(
        self,
        entity_type: type,
        key: Callable[[Any], Hashable],
        to_document: Callable[[Any], Dict[str, Any]] | None = None,
    ) -> None:
        self._entity_type = entity_type
        self._key = key
        self._to_document = to_document or (lambda entity: dict(vars(entity)))
        self.documents: Dict[Hashable, Dict[str, Any]] = {}

    @property
    def entity_type(self) -> type:
        return self._entity_type

    async def create(self, entity: Any) -> None:
        self._upsert(entity)

    async def update(self, entity: Any) -> None:
        self._upsert(entity)

    async def delete(self, entity: Any) -> None:
        key = self._key(entity)
        self.documents.pop(key, None)
        logger.debug("index_document_deleted", key=key)

    def get(self, key: Hashable) -> Dict[str, Any] | None:
        return self.documents.get(key)

    def _upsert(self, entity: Any) -> None:
        key = self._key(entity)
        self.documents[key] = self._to_document(entity)
        logger.debug("index_document_upserted", key=key)

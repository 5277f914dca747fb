# Copyright (c) Nex-AGI. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Query builder abstract base class.

A query builder materializes ``QuerySpec`` values into ``Entity`` objects and
applies mutations. Subclasses only fetch flat rows; hydration and eager
loading of relations are shared here.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel

from ..errors import UnsupportedOperationError
from .descriptor import DescriptorRegistry, ModelDescriptor, RelationKind
from .entity import Entity, Page
from .query import AggregateRequest, QuerySpec, RelationRequest

logger = logging.getLogger(__name__)


class QueryBuilder(ABC):
    """Abstract query builder for multi-backend storage."""

    def __init__(self, registry: DescriptorRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> DescriptorRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def setup_models(self, model_classes: list[type[SQLModel]] | None = None) -> None:
        """Setup storage for the given model classes (all registered ones by default)."""

    @abstractmethod
    def _fetch_rows(self, spec: QuerySpec, *, offset: int | None = None, limit: int | None = None) -> list[dict[str, Any]]:
        """Fetch the flat rows matching ``spec``, ordered and windowed."""

    @abstractmethod
    def count(self, spec: QuerySpec) -> int:
        """Count records matching ``spec`` (includes, sort and projection are ignored)."""

    @abstractmethod
    def insert(self, descriptor: ModelDescriptor, values: Mapping[str, Any]) -> Any:
        """Create a record. Returns its key."""

    @abstractmethod
    def update(self, descriptor: ModelDescriptor, key: Any, values: Mapping[str, Any]) -> int:
        """Update a record by key. Returns count of updated records."""

    @abstractmethod
    def delete(self, descriptor: ModelDescriptor, key: Any) -> int:
        """Permanently delete a record by key. Returns count of deleted records."""

    @abstractmethod
    def begin(self) -> None:
        """Open a transaction for the current execution context."""

    @abstractmethod
    def commit(self) -> None:
        """Commit the active transaction.

        Raises:
            TransactionError: If the store fails to commit
        """

    @abstractmethod
    def rollback(self) -> None:
        """Roll back the active transaction.

        Raises:
            TransactionError: If the store fails to roll back
        """

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """Whether the current execution context has an open transaction."""

    # ------------------------------------------------------------------
    # Shared operations
    # ------------------------------------------------------------------

    def get(self, spec: QuerySpec) -> list[Entity]:
        """All entities matching ``spec`` with their relations loaded."""
        return self._hydrate(spec, self._fetch_rows(spec))

    def first(self, spec: QuerySpec) -> Entity | None:
        entities = self._hydrate(spec, self._fetch_rows(spec, limit=1))
        return entities[0] if entities else None

    def paginate(self, spec: QuerySpec, page: int, per_page: int) -> Page:
        """One page of ``spec``; ``page`` is 1-based."""
        total = self.count(spec)
        rows = self._fetch_rows(spec, offset=(page - 1) * per_page, limit=per_page)
        return Page(items=self._hydrate(spec, rows), total=total, page=page, per_page=per_page)

    def soft_delete(self, descriptor: ModelDescriptor, key: Any) -> int:
        """Mark a record as trashed by stamping its soft-delete column."""
        if not descriptor.soft_deletes:
            raise UnsupportedOperationError(f"Resource '{descriptor.name}' does not support soft deletes")
        return self.update(descriptor, key, {descriptor.deleted_at_column: datetime.now(timezone.utc)})

    def restore(self, descriptor: ModelDescriptor, key: Any) -> int:
        """Clear the soft-delete column of a trashed record."""
        if not descriptor.soft_deletes:
            raise UnsupportedOperationError(f"Resource '{descriptor.name}' does not support soft deletes")
        return self.update(descriptor, key, {descriptor.deleted_at_column: None})

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run a block inside a transaction, rolling back on any exception.

        Example:
            >>> with builder.transaction():
            ...     builder.insert(posts, {"title": "a"})
        """
        self.begin()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        self.commit()

    # ------------------------------------------------------------------
    # Helpers shared by backends
    # ------------------------------------------------------------------

    @staticmethod
    def _selected_columns(spec: QuerySpec) -> list[str]:
        """Projected column names; the key is always selected."""
        descriptor = spec.descriptor
        if spec.columns is None:
            return list(descriptor.columns)
        return list(dict.fromkeys([descriptor.key_name, *spec.columns]))

    def _hydrate(self, spec: QuerySpec, rows: Sequence[Mapping[str, Any]]) -> list[Entity]:
        descriptor = spec.descriptor
        entities = [
            Entity(resource=descriptor.name, key=row[descriptor.key_name], attributes=dict(row)) for row in rows
        ]
        if entities and spec.includes:
            self._load_relations(descriptor, entities, spec.includes)
        return entities

    def _load_relations(
        self,
        descriptor: ModelDescriptor,
        entities: list[Entity],
        includes: Sequence[RelationRequest],
    ) -> None:
        """Eager load one relation level, delegating deeper levels to the next query."""
        direct: dict[str, RelationRequest] = {}
        nested: dict[str, list[RelationRequest]] = {}
        for request in includes:
            head, _, rest = request.path.partition(".")
            nested.setdefault(head, [])
            if rest:
                nested[head].append(replace(request, path=rest))
            else:
                direct[head] = request

        for name, children in nested.items():
            request = direct.get(name, RelationRequest(name))
            self._load_relation(descriptor, entities, request, children)

    @staticmethod
    def _sort_aggregates(target: ModelDescriptor, request: RelationRequest) -> list[AggregateRequest]:
        """Count aggregates the relation is sorted by."""
        sorted_by = {directive.field for directive in request.sort}
        return [AggregateRequest(name) for name in target.aggregates if AggregateRequest(name).alias in sorted_by]

    def _load_relation(
        self,
        descriptor: ModelDescriptor,
        entities: list[Entity],
        request: RelationRequest,
        children: list[RelationRequest],
    ) -> None:
        relation = descriptor.relation(request.path)
        target = self._registry.descriptor(relation.target)
        owner_field, target_field = relation.joining_fields(descriptor, target)

        values: list[Any] = []
        for entity in entities:
            value = entity.get(owner_field)
            if value is not None and value not in values:
                values.append(value)

        related: list[Entity] = []
        if values:
            spec = QuerySpec(target).where_in(target_field, values).with_relations(children)
            if request.filters is not None:
                spec = spec.where(request.filters)
            spec = spec.order_by(*request.sort).with_aggregates(self._sort_aggregates(target, request))
            related = self.get(spec)
        logger.debug("Loaded %d '%s' rows for relation '%s.%s'", len(related), target.name, descriptor.name, relation.name)

        buckets: dict[Any, list[Entity]] = {}
        for child in related:
            buckets.setdefault(child.get(target_field), []).append(child)

        for entity in entities:
            value = entity.get(owner_field)
            matches = buckets.get(value, []) if value is not None else []
            if relation.many:
                if request.pagination is not None:
                    matches = request.pagination.window(matches)  # type: ignore[assignment]
                entity.relations[relation.name] = list(matches)
            elif relation.kind == RelationKind.BELONGS_TO:
                entity.relations[relation.name] = matches[0].model_copy(deep=True) if matches else None
            else:
                entity.relations[relation.name] = matches[0] if matches else None

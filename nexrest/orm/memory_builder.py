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

"""In-memory query builder implementation using pure Python objects.

This is the reference store: filters are evaluated with ``evaluate()``, so its
results define what the SQL builder must return for the same ``QuerySpec``.
All data is lost when the Python process terminates.

Thread Safety:
    - A re-entrant lock protects every read and write
    - ``begin()`` takes the lock and keeps it until ``commit()`` or
      ``rollback()``, so transactions are serialized
    - Rollback restores a snapshot taken at ``begin()``
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Mapping
from typing import Any

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel

from ..errors import TransactionError
from .builder import QueryBuilder
from .descriptor import DescriptorRegistry, ModelDescriptor
from .filters import evaluate, evaluate_search
from .query import QuerySpec, TrashedScope

logger = logging.getLogger(__name__)


def _sort_value(value: Any) -> tuple[bool, Any]:
    # NULL sorts before any value, as in SQLite
    return (value is not None, value)


class InMemoryQueryBuilder(QueryBuilder):
    """Thread-safe in-memory query builder.

    Example:
        >>> builder = InMemoryQueryBuilder(registry)
        >>> builder.setup_models()
        >>> key = builder.insert(posts, {"title": "Hello"})
        >>> builder.first(QuerySpec(posts).where(ComparisonFilter.eq("id", key)))
    """

    def __init__(self, registry: DescriptorRegistry) -> None:
        super().__init__(registry)
        # Storage: {resource name: {key: row}}
        self._storage: dict[str, dict[Any, dict[str, Any]]] = {}
        self._sequences: dict[str, int] = {}
        self._lock = threading.RLock()
        self._snapshot: tuple[dict[str, dict[Any, dict[str, Any]]], dict[str, int]] | None = None
        self._owner: int | None = None

    def setup_models(self, model_classes: list[type[SQLModel]] | None = None) -> None:
        """Initialize storage for the resources backed by ``model_classes``."""
        with self._lock:
            for descriptor in self._registry:
                if model_classes is None or descriptor.model_class in model_classes:
                    self._storage.setdefault(descriptor.name, {})
                    self._sequences.setdefault(descriptor.name, 0)

    def _get_table(self, descriptor: ModelDescriptor) -> dict[Any, dict[str, Any]]:
        return self._storage.setdefault(descriptor.name, {})

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._snapshot is not None and self._owner == threading.get_ident()

    def begin(self) -> None:
        self._lock.acquire()
        if self._snapshot is not None:
            self._lock.release()
            raise TransactionError("A transaction is already active in this thread")
        self._snapshot = (copy.deepcopy(self._storage), dict(self._sequences))
        self._owner = threading.get_ident()
        logger.debug("Transaction started")

    def commit(self) -> None:
        self._end_transaction()
        logger.debug("Transaction committed")

    def rollback(self) -> None:
        snapshot = self._snapshot
        if snapshot is not None and self.in_transaction:
            self._storage, self._sequences = snapshot
        self._end_transaction()
        logger.debug("Transaction rolled back")

    def _end_transaction(self) -> None:
        if not self.in_transaction:
            raise TransactionError("No active transaction")
        self._snapshot = None
        self._owner = None
        self._lock.release()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _matches(self, spec: QuerySpec, row: Mapping[str, Any]) -> bool:
        descriptor = spec.descriptor
        if descriptor.soft_deletes:
            trashed = row.get(descriptor.deleted_at_column) is not None
            if spec.trashed == TrashedScope.EXCLUDE and trashed:
                return False
            if spec.trashed == TrashedScope.ONLY and not trashed:
                return False
        if not all(evaluate(node, row) for node in spec.wheres):
            return False
        return spec.search_term is None or evaluate_search(spec.search_term, row)

    def _aggregate_count(self, descriptor: ModelDescriptor, relation_name: str, row: Mapping[str, Any]) -> int:
        relation = descriptor.relation(relation_name)
        target = self._registry.descriptor(relation.target)
        owner_field, target_field = relation.joining_fields(descriptor, target)
        value = row.get(owner_field)
        if value is None:
            return 0
        return sum(
            1
            for related in self._get_table(target).values()
            if related.get(target_field) == value
            and not (target.soft_deletes and related.get(target.deleted_at_column) is not None)
        )

    def _fetch_rows(self, spec: QuerySpec, *, offset: int | None = None, limit: int | None = None) -> list[dict[str, Any]]:
        descriptor = spec.descriptor
        with self._lock:
            rows = []
            for row in self._get_table(descriptor).values():
                if not self._matches(spec, row):
                    continue
                result = dict(row)
                for aggregate in spec.aggregates:
                    result[aggregate.alias] = self._aggregate_count(descriptor, aggregate.relation, row)
                rows.append(result)

        # Stable sorts applied from the least significant key up
        rows.sort(key=lambda r: _sort_value(r[descriptor.key_name]))
        for directive in reversed(spec.sorts):
            rows.sort(key=lambda r: _sort_value(r.get(directive.field)), reverse=directive.descending)

        start = offset or 0
        rows = rows[start:] if limit is None else rows[start : start + limit]

        selected = self._selected_columns(spec) + [aggregate.alias for aggregate in spec.aggregates]
        return [{name: row.get(name) for name in selected} for row in rows]

    def count(self, spec: QuerySpec) -> int:
        with self._lock:
            return sum(1 for row in self._get_table(spec.descriptor).values() if self._matches(spec, row))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _unique_column_sets(self, descriptor: ModelDescriptor) -> list[tuple[str, ...]]:
        table = descriptor.model_class.__table__  # type: ignore[attr-defined]
        column_sets = {
            tuple(column.name for column in constraint.columns)
            for constraint in table.constraints
            if isinstance(constraint, UniqueConstraint)
        }
        column_sets |= {(column.name,) for column in table.columns if column.unique}
        return sorted(column_sets)

    def _check_unique(self, descriptor: ModelDescriptor, key: Any, row: Mapping[str, Any]) -> None:
        """Raise ValueError when ``row`` collides with another row on a unique constraint."""
        for columns in self._unique_column_sets(descriptor):
            values = tuple(row.get(name) for name in columns)
            # NULLs never collide
            if any(value is None for value in values):
                continue
            for other_key, other in self._get_table(descriptor).items():
                if other_key != key and tuple(other.get(name) for name in columns) == values:
                    raise ValueError(f"Duplicate value for unique {dict(zip(columns, values))} on '{descriptor.name}'")

    def insert(self, descriptor: ModelDescriptor, values: Mapping[str, Any]) -> Any:
        """Create a record.

        Raises:
            ValueError: If the key or a unique column collides with an existing record
        """
        model = descriptor.model_class(**values)
        row = {name: getattr(model, name, None) for name in descriptor.columns}

        with self._lock:
            table = self._get_table(descriptor)
            key = row.get(descriptor.key_name)
            if key is None:
                key = self._sequences.get(descriptor.name, 0) + 1
                while key in table:
                    key += 1
                row[descriptor.key_name] = key
            if key in table:
                raise ValueError(f"Duplicate primary key: {{'{descriptor.key_name}': {key!r}}}")
            self._check_unique(descriptor, key, row)

            if isinstance(key, int):
                self._sequences[descriptor.name] = max(self._sequences.get(descriptor.name, 0), key)
            table[key] = row
            return key

    def update(self, descriptor: ModelDescriptor, key: Any, values: Mapping[str, Any]) -> int:
        """Update a record by key.

        Raises:
            ValueError: If the new values collide on a unique column
        """
        if not values:
            return 0
        with self._lock:
            table = self._get_table(descriptor)
            if key not in table:
                return 0
            updated = {**table[key], **values}
            self._check_unique(descriptor, key, updated)
            table[key] = updated
            return 1

    def delete(self, descriptor: ModelDescriptor, key: Any) -> int:
        with self._lock:
            table = self._get_table(descriptor)
            if key not in table:
                return 0
            del table[key]
            return 1

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

"""Immutable query specifications.

A ``QuerySpec`` is built up by pure transformations and handed to a
``QueryBuilder`` exactly once to be materialized:

    >>> spec = QuerySpec(posts).where(ComparisonFilter.eq("status", "draft")).order_by(SortDirective("title"))
    >>> builder.get(spec)
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum

from .descriptor import ModelDescriptor
from .filters import ComparisonFilter, FilterNode, Scalar, SearchTerm


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class SortDirective:
    field: str
    direction: SortDirection = SortDirection.ASC

    @property
    def descending(self) -> bool:
        return self.direction == SortDirection.DESC


class TrashedScope(str, Enum):
    """Which soft-deleted rows a query sees."""

    EXCLUDE = "exclude"
    INCLUDE = "include"
    ONLY = "only"


@dataclass(frozen=True)
class RelationPagination:
    """Per-parent window applied to an eager-loaded to-many relation."""

    limit: int
    page: int = 1

    def window(self, items: Sequence[object]) -> list[object]:
        start = (self.page - 1) * self.limit
        return list(items[start : start + self.limit])


@dataclass(frozen=True)
class RelationRequest:
    """A relation to eager load, identified by its dot path.

    Equality and hashing use the path only, so a set of requests holds at
    most one entry per path.
    """

    path: str
    filters: FilterNode | None = field(default=None, compare=False)
    sort: tuple[SortDirective, ...] = field(default=(), compare=False)
    pagination: RelationPagination | None = field(default=None, compare=False)

    @property
    def segments(self) -> list[str]:
        return self.path.split(".")

    @property
    def depth(self) -> int:
        """Nesting below the first segment (``posts`` is 0, ``posts.comments`` is 1)."""
        return len(self.segments) - 1


@dataclass(frozen=True)
class AggregateRequest:
    """Count of related rows exposed as ``<relation>_count``."""

    relation: str

    @property
    def alias(self) -> str:
        return f"{self.relation}_count"


@dataclass(frozen=True)
class PaginationRequest:
    """Resolved pagination parameters of a request.

    ``disabled`` means the whole result set is returned as a single,
    unpaginated collection.
    """

    page: int = 1
    limit: int = 15
    disabled: bool = False

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class QuerySpec:
    """Immutable description of a fetch query against one resource."""

    descriptor: ModelDescriptor
    wheres: tuple[FilterNode, ...] = ()
    search_term: SearchTerm | None = None
    includes: tuple[RelationRequest, ...] = ()
    sorts: tuple[SortDirective, ...] = ()
    aggregates: tuple[AggregateRequest, ...] = ()
    trashed: TrashedScope = TrashedScope.EXCLUDE
    columns: tuple[str, ...] | None = None

    def where(self, node: FilterNode) -> QuerySpec:
        """AND a filter tree onto the query."""
        return replace(self, wheres=self.wheres + (node,))

    def where_in(self, field_name: str, values: Iterable[Scalar]) -> QuerySpec:
        return self.where(ComparisonFilter.in_(field_name, list(values)))

    def search(self, term: SearchTerm | None) -> QuerySpec:
        return replace(self, search_term=term)

    def with_relations(self, requests: Iterable[RelationRequest]) -> QuerySpec:
        merged = {request.path: request for request in self.includes}
        for request in requests:
            merged[request.path] = request
        return replace(self, includes=tuple(sorted(merged.values(), key=lambda r: r.path)))

    def order_by(self, *directives: SortDirective) -> QuerySpec:
        return replace(self, sorts=self.sorts + tuple(directives))

    def with_aggregates(self, aggregates: Iterable[AggregateRequest]) -> QuerySpec:
        return replace(self, aggregates=self.aggregates + tuple(aggregates))

    def with_trashed(self) -> QuerySpec:
        return replace(self, trashed=TrashedScope.INCLUDE)

    def only_trashed(self) -> QuerySpec:
        return replace(self, trashed=TrashedScope.ONLY)

    def without_trashed(self) -> QuerySpec:
        return replace(self, trashed=TrashedScope.EXCLUDE)

    def select(self, columns: Iterable[str] | None) -> QuerySpec:
        """Restrict the selected columns; ``None`` selects every column."""
        return replace(self, columns=None if columns is None else tuple(dict.fromkeys(columns)))

    @property
    def aggregate_aliases(self) -> set[str]:
        return {aggregate.alias for aggregate in self.aggregates}

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

"""Compiles parsed requests into query specifications."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from ..config import RestConfig
from ..orm.descriptor import ModelDescriptor, RelationKind
from ..orm.filters import FilterNode
from ..orm.query import AggregateRequest, QuerySpec, RelationRequest, TrashedScope
from .parser import ParsedQuery


class QueryCompiler:
    """Builds the ``QuerySpec`` for one resource from a parsed request.

    Clauses are applied in a fixed order: scopes, soft-delete scope, filter
    tree, search, eager loads, sort, aggregates, projection.
    """

    def __init__(self, descriptor: ModelDescriptor, config: RestConfig) -> None:
        self.descriptor = descriptor
        self.config = config

    def build_fetch_query(
        self,
        parsed: ParsedQuery,
        requested_relations: Iterable[RelationRequest],
        scopes: Sequence[FilterNode] = (),
    ) -> QuerySpec:
        """Compile ``parsed`` into a fetch query.

        Args:
            parsed: Parsed request parameters
            requested_relations: Relations to eager load
            scopes: Filters applied before the request's own, such as the
                parent constraint of a relation endpoint
        """
        spec = QuerySpec(self.descriptor)
        for scope in scopes:
            spec = spec.where(scope)

        if parsed.trashed == TrashedScope.INCLUDE:
            spec = spec.with_trashed()
        elif parsed.trashed == TrashedScope.ONLY:
            spec = spec.only_trashed()

        if parsed.filters is not None:
            spec = spec.where(parsed.filters)
        if parsed.search is not None:
            spec = spec.search(parsed.search)

        spec = spec.with_relations(requested_relations)
        spec = spec.order_by(*parsed.sorts)
        spec = spec.with_aggregates(self._aggregates(parsed))

        if parsed.columns is not None:
            spec = spec.select(self._projection(parsed.columns, spec.includes))
        return spec

    def build_batch_fetch_query(
        self,
        parsed: ParsedQuery,
        requested_relations: Iterable[RelationRequest],
        keys: Iterable[Any],
        scopes: Sequence[FilterNode] = (),
    ) -> QuerySpec:
        """Fetch query narrowed to the given keys."""
        spec = self.build_fetch_query(parsed, requested_relations, scopes)
        return spec.where_in(self.descriptor.key_name, keys)

    def _aggregates(self, parsed: ParsedQuery) -> list[AggregateRequest]:
        """Requested aggregates plus those only referenced by a sort directive."""
        aggregates = list(parsed.aggregates)
        aliases = {aggregate.alias for aggregate in aggregates}
        for relation in self.descriptor.aggregates:
            candidate = AggregateRequest(relation)
            if candidate.alias not in aliases and any(s.field == candidate.alias for s in parsed.sorts):
                aggregates.append(candidate)
                aliases.add(candidate.alias)
        return aggregates

    def _projection(self, columns: Sequence[str], includes: Sequence[RelationRequest]) -> list[str]:
        """Requested columns plus the key and every column a loaded relation joins on."""
        selected = [self.descriptor.key_name]
        included = dict.fromkeys(request.segments[0] for request in includes)
        for name in included:
            relation = self.descriptor.relation(name)
            if relation.kind == RelationKind.BELONGS_TO:
                selected.append(relation.foreign_key)
            elif relation.local_key:
                selected.append(relation.local_key)
        return list(dict.fromkeys([*selected, *columns]))

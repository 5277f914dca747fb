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

"""Resource and relation controllers.

A controller wires the parser, relations resolver, compiler, batch engine
and responder of one resource together and exposes the standard operations.
Every operation returns an ``Envelope``, except when a hook responded, in
which case the hook's response is returned as is.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..config import RestConfig
from ..errors import ResourceNotFoundError, UnsupportedOperationError
from ..orm.builder import QueryBuilder
from ..orm.descriptor import RelationKind
from ..orm.filters import ComparisonFilter, FilterNode
from ..orm.query import QuerySpec
from .authorization import Ability
from .batch import BatchOperationEngine, BatchOutcome
from .compiler import QueryCompiler
from .hooks import BatchVerb
from .parser import FilterParser, ParsedQuery
from .registry import ResourceBinding, ResourceRegistry
from .relations import RelationsResolver
from .request import ResourceRequest
from .responder import Envelope, ResourceCollectionResponder

logger = logging.getLogger(__name__)


class ResourceController:
    """Standard CRUD, search and batch operations for one resource.

    Example:
        >>> controller = ResourceController(registry.binding("posts"), builder, registry)
        >>> controller.index(ResourceRequest(path="/posts", query={"page": "2"})).meta["current_page"]
        2
    """

    def __init__(
        self,
        binding: ResourceBinding,
        builder: QueryBuilder,
        registry: ResourceRegistry,
        config: RestConfig | None = None,
        *,
        scopes: Sequence[FilterNode] = (),
        attributes: Mapping[str, Any] | None = None,
        store_allowed: bool = True,
    ) -> None:
        self.binding = binding
        self.descriptor = binding.descriptor
        self.builder = builder
        self.config = config or RestConfig()
        self.parser = FilterParser(self.descriptor, self.config)
        self.resolver = RelationsResolver(self.descriptor, registry, self.config)
        self.compiler = QueryCompiler(self.descriptor, self.config)
        self.responder = ResourceCollectionResponder(self.resolver)
        self.engine = BatchOperationEngine(builder, binding, self.resolver, self.compiler)
        self.scopes = tuple(scopes)
        self.attributes = dict(attributes or {})
        self.store_allowed = store_allowed

    @property
    def name(self) -> str:
        return self.descriptor.name

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def index(self, request: ResourceRequest) -> Envelope:
        """List entities, driven by query-string parameters."""
        self._authorize(Ability.VIEW_ANY, self.name, request)
        return self._collection(request, self.parser.parse_query(request.query))

    def search(self, request: ResourceRequest) -> Envelope:
        """List entities, driven by the request body (filters, search, sort, includes)."""
        self._authorize(Ability.VIEW_ANY, self.name, request)
        return self._collection(request, self.parser.parse_query(request.all()))

    def _collection(self, request: ResourceRequest, parsed: ParsedQuery) -> Envelope:
        requested = self.resolver.requested_relations(request)
        spec = self.compiler.build_fetch_query(parsed, requested, self.scopes)
        pagination = parsed.pagination
        if pagination.disabled:
            return self.responder.respond(self.builder.get(spec), requested, request)
        page = self.builder.paginate(spec, pagination.page, pagination.limit)
        return self.responder.respond(page, requested, request)

    def show(self, request: ResourceRequest, key: Any) -> Envelope:
        """One entity by key.

        Raises:
            ResourceNotFoundError: If no visible entity has the key
        """
        key = self.descriptor.coerce_key(key)
        params = request.query
        parsed = ParsedQuery(
            columns=self.parser.parse_fields(params),
            aggregates=self.parser.parse_aggregates(params),
            trashed=self.parser.parse_trashed(params),
        )
        requested = self.resolver.requested_relations(request)
        entity = self.builder.first(self.compiler.build_batch_fetch_query(parsed, requested, [key], self.scopes))
        if entity is None:
            raise ResourceNotFoundError(self.name, key)
        self._authorize(Ability.VIEW, entity, request)
        return self.responder.respond_entity(entity, requested)

    # ------------------------------------------------------------------
    # Single-entity mutations
    # ------------------------------------------------------------------

    def store(self, request: ResourceRequest) -> Envelope | Any:
        self._check_store()
        outcome = self.engine.run(BatchVerb.STORE, request, [dict(request.body)], **self._batch_options())
        return self._single(outcome, None)

    def update(self, request: ResourceRequest, key: Any) -> Envelope | Any:
        outcome = self.engine.run(BatchVerb.UPDATE, request, {key: dict(request.body)}, **self._batch_options())
        return self._single(outcome, key)

    def destroy(self, request: ResourceRequest, key: Any) -> Envelope | Any:
        outcome = self.engine.run(BatchVerb.DESTROY, request, [key], **self._batch_options())
        return self._single(outcome, key)

    def restore(self, request: ResourceRequest, key: Any) -> Envelope | Any:
        outcome = self.engine.run(BatchVerb.RESTORE, request, [key], **self._batch_options())
        return self._single(outcome, key)

    def _single(self, outcome: BatchOutcome, key: Any) -> Envelope | Any:
        if outcome.responded:
            return outcome.response
        if not outcome.entities:
            raise ResourceNotFoundError(self.name, key)
        return self.responder.respond_entity(outcome.entities[0], outcome.requested_relations)

    # ------------------------------------------------------------------
    # Batch mutations
    # ------------------------------------------------------------------

    def batch_store(self, request: ResourceRequest) -> Envelope | Any:
        self._check_store()
        return self._many(self.engine.batch_store(request, **self._batch_options()), request)

    def batch_update(self, request: ResourceRequest) -> Envelope | Any:
        return self._many(self.engine.batch_update(request, **self._batch_options()), request)

    def batch_destroy(self, request: ResourceRequest) -> Envelope | Any:
        return self._many(self.engine.batch_destroy(request, **self._batch_options()), request)

    def batch_restore(self, request: ResourceRequest) -> Envelope | Any:
        return self._many(self.engine.batch_restore(request, **self._batch_options()), request)

    def _many(self, outcome: BatchOutcome, request: ResourceRequest) -> Envelope | Any:
        if outcome.responded:
            return outcome.response
        return self.responder.respond(outcome.entities, outcome.requested_relations, request)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _batch_options(self) -> dict[str, Any]:
        return {"scopes": self.scopes, "attributes": self.attributes}

    def _check_store(self) -> None:
        if not self.store_allowed:
            raise UnsupportedOperationError(f"Cannot store '{self.name}' through this relation")

    def _authorize(self, ability: Ability, subject: Any, request: ResourceRequest) -> None:
        self.binding.authorizer.authorize(ability, subject, user=request.user)


class RelationController:
    """Operations on the resources related to one parent entity.

    Example:
        >>> comments = RelationController(registry.binding("posts"), "comments", builder, registry)
        >>> comments.for_parent(1).store(ResourceRequest(body={"body": "First!"}))
    """

    def __init__(
        self,
        parent_binding: ResourceBinding,
        relation: str,
        builder: QueryBuilder,
        registry: ResourceRegistry,
        config: RestConfig | None = None,
    ) -> None:
        self.parent_binding = parent_binding
        self.relation = parent_binding.descriptor.relation(relation)
        self.child_binding = registry.binding(self.relation.target)
        self.builder = builder
        self.registry = registry
        self.config = config or RestConfig()

    @property
    def name(self) -> str:
        return f"{self.parent_binding.name}.{self.relation.name}"

    def for_parent(self, parent_key: Any) -> ResourceController:
        """A controller over the parent's related resources.

        Raises:
            ResourceNotFoundError: If the parent does not exist
        """
        parent_descriptor = self.parent_binding.descriptor
        key = parent_descriptor.coerce_key(parent_key)
        parent = self.builder.first(QuerySpec(parent_descriptor).where_in(parent_descriptor.key_name, [key]))
        if parent is None:
            raise ResourceNotFoundError(parent_descriptor.name, key)

        owner_field, target_field = self.relation.joining_fields(parent_descriptor, self.child_binding.descriptor)
        value = parent.get(owner_field)
        # A missing reference matches nothing
        scope = ComparisonFilter.eq(target_field, value) if value is not None else ComparisonFilter.in_(target_field, [])

        belongs_to = self.relation.kind == RelationKind.BELONGS_TO
        logger.debug("Scoped '%s' to parent %r", self.name, key)
        return ResourceController(
            self.child_binding,
            self.builder,
            self.registry,
            self.config,
            scopes=[scope],
            attributes={} if belongs_to else {target_field: value},
            store_allowed=not belongs_to,
        )

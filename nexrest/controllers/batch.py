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

"""Transactional batch operations.

Each batch runs inside exactly one transaction:

    begin -> before_batch -> (authorize -> before_action -> [before_save]
    -> mutation -> before_fresh -> re-fetch -> [after_save] -> after_action)*
    -> after_batch -> commit

Any exception after ``begin`` rolls the transaction back and is re-raised
unchanged. A hook that responds ends the batch early; the work done so far
is committed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from ..errors import (
    MalformedRequestError,
    PayloadValidationError,
    ResourceNotFoundError,
    TransactionError,
    UnsupportedOperationError,
)
from ..orm.builder import QueryBuilder
from ..orm.entity import Entity
from ..orm.filters import FilterNode
from ..orm.query import RelationRequest, TrashedScope
from .authorization import Ability
from .compiler import QueryCompiler
from .hooks import BatchContext, BatchHookInput, BatchVerb, EntityHookInput, HookResult, ResourceHooks
from .parser import FilterParser, ParsedQuery
from .registry import ResourceBinding
from .relations import RelationsResolver
from .request import ResourceRequest

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """What a batch produced: re-fetched entities, or a hook's response."""

    entities: list[Entity] = field(default_factory=list)
    responded: bool = False
    response: Any = None
    requested_relations: frozenset[RelationRequest] = frozenset()


@dataclass
class BatchTarget:
    """One entity a batch is about to mutate.

    Attributes:
        entity: Pending entity (store) or the entity as fetched
        payload: Validated attributes to write
        original: Attributes as fetched, used to compute the update diff
    """

    entity: Entity
    payload: dict[str, Any] = field(default_factory=dict)
    original: dict[str, Any] = field(default_factory=dict)


class BatchAction(ABC):
    """Per-verb strategy plugged into the batch engine."""

    verb: BatchVerb
    saves = False

    def __init__(self, engine: BatchOperationEngine) -> None:
        self.engine = engine

    @property
    def builder(self) -> QueryBuilder:
        return self.engine.builder

    @abstractmethod
    def prepare(self, resources: Any) -> Any:
        """Validate the ``resources`` payload. Runs before the transaction opens."""

    @abstractmethod
    def targets(self, ctx: BatchContext, prepared: Any) -> list[BatchTarget]:
        """Resolve the entities to mutate. Runs inside the transaction."""

    @abstractmethod
    def ability(self, ctx: BatchContext) -> Ability:
        """Ability checked for every target."""

    def fill(self, ctx: BatchContext, target: BatchTarget) -> None:
        """Apply the payload to the entity before ``before_save``."""

    @abstractmethod
    def mutate(self, ctx: BatchContext, target: BatchTarget) -> Any:
        """Perform the mutation. Returns the key of the mutated record."""

    @abstractmethod
    def refresh(self, ctx: BatchContext, target: BatchTarget, key: Any) -> Entity:
        """The entity to respond with after the mutation."""

    def _keys(self, resources: Any) -> list[Any]:
        if not isinstance(resources, list):
            raise MalformedRequestError("'resources' must be a list of keys")
        descriptor = self.engine.binding.descriptor
        return list(dict.fromkeys(descriptor.coerce_key(raw) for raw in resources))


class StoreAction(BatchAction):
    verb = BatchVerb.STORE
    saves = True

    def prepare(self, resources: Any) -> list[dict[str, Any]]:
        if not isinstance(resources, list):
            raise MalformedRequestError("'resources' must be a list of payloads")
        return [self.engine.validate_payload(item, partial=False) for item in resources]

    def targets(self, ctx: BatchContext, prepared: list[dict[str, Any]]) -> list[BatchTarget]:
        targets = []
        for payload in prepared:
            attributes = {**payload, **ctx.attributes}
            entity = Entity(resource=ctx.descriptor.name, key=None, attributes=attributes)
            targets.append(BatchTarget(entity=entity, payload=attributes))
        return targets

    def ability(self, ctx: BatchContext) -> Ability:
        return Ability.CREATE

    def mutate(self, ctx: BatchContext, target: BatchTarget) -> Any:
        descriptor = ctx.descriptor
        columns = set(descriptor.columns)
        values = {
            name: value
            for name, value in target.entity.attributes.items()
            if name in columns and (name != descriptor.key_name or value is not None)
        }
        return self.builder.insert(descriptor, values)

    def refresh(self, ctx: BatchContext, target: BatchTarget, key: Any) -> Entity:
        fresh = self.engine.refetch(ctx, key, TrashedScope.EXCLUDE)
        fresh.was_recently_created = True
        return fresh


class UpdateAction(BatchAction):
    verb = BatchVerb.UPDATE
    saves = True

    def prepare(self, resources: Any) -> dict[Any, dict[str, Any]]:
        if not isinstance(resources, Mapping):
            raise MalformedRequestError("'resources' must map keys to payloads")
        descriptor = self.engine.binding.descriptor
        return {
            descriptor.coerce_key(raw_key): self.engine.validate_payload(item, partial=True)
            for raw_key, item in resources.items()
        }

    def targets(self, ctx: BatchContext, prepared: dict[Any, dict[str, Any]]) -> list[BatchTarget]:
        entities = self.engine.fetch_targets(ctx, list(prepared), ctx.parsed.trashed)
        return [
            BatchTarget(entity=entity, payload=prepared[entity.key], original=dict(entity.attributes))
            for entity in entities
        ]

    def ability(self, ctx: BatchContext) -> Ability:
        return Ability.UPDATE

    def fill(self, ctx: BatchContext, target: BatchTarget) -> None:
        target.entity.attributes.update(target.payload)

    def mutate(self, ctx: BatchContext, target: BatchTarget) -> Any:
        descriptor = ctx.descriptor
        columns = set(descriptor.columns)
        changes = {
            name: value
            for name, value in target.entity.attributes.items()
            if name in columns and name != descriptor.key_name and target.original.get(name) != value
        }
        self.builder.update(descriptor, target.entity.key, changes)
        return target.entity.key

    def refresh(self, ctx: BatchContext, target: BatchTarget, key: Any) -> Entity:
        return self.engine.refetch(ctx, key, ctx.parsed.trashed)


class DestroyAction(BatchAction):
    verb = BatchVerb.DESTROY

    def prepare(self, resources: Any) -> list[Any]:
        return self._keys(resources)

    @staticmethod
    def _soft(ctx: BatchContext) -> bool:
        return ctx.descriptor.soft_deletes and not ctx.force

    def targets(self, ctx: BatchContext, prepared: list[Any]) -> list[BatchTarget]:
        trashed = TrashedScope.EXCLUDE if self._soft(ctx) else TrashedScope.INCLUDE
        return [BatchTarget(entity=entity) for entity in self.engine.fetch_targets(ctx, prepared, trashed)]

    def ability(self, ctx: BatchContext) -> Ability:
        if ctx.force and ctx.descriptor.soft_deletes:
            return Ability.FORCE_DELETE
        return Ability.DELETE

    def mutate(self, ctx: BatchContext, target: BatchTarget) -> Any:
        key = target.entity.key
        if self._soft(ctx):
            self.builder.soft_delete(ctx.descriptor, key)
        else:
            self.builder.delete(ctx.descriptor, key)
        return key

    def refresh(self, ctx: BatchContext, target: BatchTarget, key: Any) -> Entity:
        if self._soft(ctx):
            return self.engine.refetch(ctx, key, TrashedScope.INCLUDE)
        # The row is gone; respond with what it looked like
        return target.entity


class RestoreAction(BatchAction):
    verb = BatchVerb.RESTORE

    def prepare(self, resources: Any) -> list[Any]:
        descriptor = self.engine.binding.descriptor
        if not descriptor.soft_deletes:
            raise UnsupportedOperationError(f"Resource '{descriptor.name}' does not support soft deletes")
        return self._keys(resources)

    def targets(self, ctx: BatchContext, prepared: list[Any]) -> list[BatchTarget]:
        return [BatchTarget(entity=entity) for entity in self.engine.fetch_targets(ctx, prepared, TrashedScope.ONLY)]

    def ability(self, ctx: BatchContext) -> Ability:
        return Ability.RESTORE

    def mutate(self, ctx: BatchContext, target: BatchTarget) -> Any:
        self.builder.restore(ctx.descriptor, target.entity.key)
        return target.entity.key

    def refresh(self, ctx: BatchContext, target: BatchTarget, key: Any) -> Entity:
        return self.engine.refetch(ctx, key, TrashedScope.EXCLUDE)


class BatchOperationEngine:
    """Runs store, update, destroy and restore batches for one resource.

    Example:
        >>> engine = BatchOperationEngine(builder, registry.binding("posts"), resolver, compiler)
        >>> outcome = engine.batch_store(ResourceRequest(body={"resources": [{"title": "a"}, {"title": "b"}]}))
        >>> [entity.key for entity in outcome.entities]
        [1, 2]
    """

    def __init__(
        self,
        builder: QueryBuilder,
        binding: ResourceBinding,
        resolver: RelationsResolver,
        compiler: QueryCompiler,
    ) -> None:
        self.builder = builder
        self.binding = binding
        self.resolver = resolver
        self.compiler = compiler
        self.parser = FilterParser(binding.descriptor, compiler.config)
        self._actions: dict[BatchVerb, BatchAction] = {
            BatchVerb.STORE: StoreAction(self),
            BatchVerb.UPDATE: UpdateAction(self),
            BatchVerb.DESTROY: DestroyAction(self),
            BatchVerb.RESTORE: RestoreAction(self),
        }

    def batch_store(self, request: ResourceRequest, **options: Any) -> BatchOutcome:
        return self.run(BatchVerb.STORE, request, request.body.get("resources"), **options)

    def batch_update(self, request: ResourceRequest, **options: Any) -> BatchOutcome:
        return self.run(BatchVerb.UPDATE, request, request.body.get("resources"), **options)

    def batch_destroy(self, request: ResourceRequest, **options: Any) -> BatchOutcome:
        return self.run(BatchVerb.DESTROY, request, request.body.get("resources"), **options)

    def batch_restore(self, request: ResourceRequest, **options: Any) -> BatchOutcome:
        return self.run(BatchVerb.RESTORE, request, request.body.get("resources"), **options)

    def run(
        self,
        verb: BatchVerb,
        request: ResourceRequest,
        resources: Any,
        *,
        scopes: Iterable[FilterNode] = (),
        attributes: Mapping[str, Any] | None = None,
    ) -> BatchOutcome:
        """Execute one batch.

        Args:
            verb: Batch verb
            request: Inbound request (include, with_trashed, force, ...)
            resources: Payloads (store), key to payload mapping (update) or keys
            scopes: Filters every target must satisfy
            attributes: Attributes forced onto stored entities

        Raises:
            RequestError: If the request is invalid; raised before the transaction opens
            AuthorizationError: If an entity fails authorization; the batch is rolled back
            TransactionError: If the store fails to commit
        """
        action = self._actions[verb]
        descriptor = self.binding.descriptor

        prepared = action.prepare(resources)
        ctx = BatchContext(
            verb=verb,
            descriptor=descriptor,
            request=request,
            parsed=self.parser.parse_query(request.all()),
            requested_relations=self.resolver.requested_relations(request),
            scopes=tuple(scopes),
            attributes=dict(attributes or {}),
            force=verb == BatchVerb.DESTROY and request.boolean("force"),
        )
        hooks = self.binding.hooks_for(verb)

        logger.debug("Starting %s batch on '%s'", verb.value, descriptor.name)
        self.builder.begin()
        try:
            outcome = self._execute(action, hooks, ctx, prepared)
        except BaseException as e:
            logger.warning("Rolling back %s batch on '%s': %s", verb.value, descriptor.name, e)
            self._rollback_quietly()
            raise
        self.builder.commit()
        logger.debug("Committed %s batch on '%s' (%d entities)", verb.value, descriptor.name, len(ctx.entities))
        return outcome

    def _rollback_quietly(self) -> None:
        # The error that caused the rollback is the one reported to the caller
        try:
            self.builder.rollback()
        except TransactionError:
            logger.exception("Rollback failed")

    def _execute(self, action: BatchAction, hooks: ResourceHooks, ctx: BatchContext, prepared: Any) -> BatchOutcome:
        result = hooks.before_batch(BatchHookInput(ctx))
        if result.responds:
            return self._short_circuit(ctx, "before_batch", result)

        for target in action.targets(ctx, prepared):
            result = self._process(action, hooks, ctx, target)
            if result is not None:
                return self._short_circuit(ctx, "entity hook", result)

        result = hooks.after_batch(BatchHookInput(ctx))
        if result.responds:
            return self._short_circuit(ctx, "after_batch", result)
        return BatchOutcome(entities=ctx.entities, requested_relations=ctx.requested_relations)

    def _process(
        self,
        action: BatchAction,
        hooks: ResourceHooks,
        ctx: BatchContext,
        target: BatchTarget,
    ) -> HookResult | None:
        """Run the per-entity pipeline. Returns the result of a responding hook, if any."""
        self.binding.authorizer.authorize(action.ability(ctx), target.entity, user=ctx.request.user)

        hook_input = EntityHookInput(ctx, target.entity)
        result = hooks.before_action(hook_input)
        if result.responds:
            return result

        action.fill(ctx, target)
        if action.saves:
            result = hooks.before_save(hook_input)
            if result.responds:
                return result

        key = action.mutate(ctx, target)
        result = hooks.before_fresh(hook_input)
        if result.responds:
            return result

        fresh_input = EntityHookInput(ctx, action.refresh(ctx, target, key))
        if action.saves:
            result = hooks.after_save(fresh_input)
            if result.responds:
                return result
        result = hooks.after_action(fresh_input)
        if result.responds:
            return result

        ctx.entities.append(fresh_input.entity)
        return None

    def _short_circuit(self, ctx: BatchContext, point: str, result: HookResult) -> BatchOutcome:
        logger.info("%s batch on '%s' short-circuited by %s", ctx.verb.value, ctx.descriptor.name, point)
        return BatchOutcome(
            entities=ctx.entities,
            responded=True,
            response=result.response,
            requested_relations=ctx.requested_relations,
        )

    # ------------------------------------------------------------------
    # Helpers used by actions
    # ------------------------------------------------------------------

    def validate_payload(self, item: Any, *, partial: bool) -> dict[str, Any]:
        """Validate one payload and keep its mass-assignable fields.

        Raises:
            MalformedRequestError: If the payload is not an object
            PayloadValidationError: If the bound validator rejects it
        """
        if not isinstance(item, Mapping):
            raise MalformedRequestError(f"Resource payload must be an object, got {item!r}")
        model = self.binding.update_payload_model if partial else self.binding.payload_model
        data = dict(item)
        if model is not None:
            try:
                validated = model.model_validate(data)
            except ValidationError as e:
                raise PayloadValidationError(
                    f"Invalid payload for resource '{self.binding.name}'",
                    errors=[dict(error) for error in e.errors(include_url=False, include_context=False)],
                ) from e
            data = validated.model_dump(exclude_unset=partial)
        return self.binding.descriptor.filter_payload(data)

    def fetch_targets(self, ctx: BatchContext, keys: list[Any], trashed: TrashedScope) -> list[Entity]:
        """Entities for ``keys`` in request order; keys not found are skipped."""
        if not keys:
            return []
        spec = self.compiler.build_batch_fetch_query(ParsedQuery(trashed=trashed), ctx.requested_relations, keys, ctx.scopes)
        found = {entity.key: entity for entity in self.builder.get(spec)}
        missing = [key for key in keys if key not in found]
        if missing:
            logger.debug("Skipping missing '%s' keys: %s", ctx.descriptor.name, missing)
        return [found[key] for key in keys if key in found]

    def refetch(self, ctx: BatchContext, key: Any, trashed: TrashedScope) -> Entity:
        """Re-read a mutated entity inside the batch transaction.

        Raises:
            ResourceNotFoundError: If the entity is not visible any more
        """
        parsed = ParsedQuery(trashed=trashed, columns=ctx.parsed.columns, aggregates=ctx.parsed.aggregates)
        spec = self.compiler.build_batch_fetch_query(parsed, ctx.requested_relations, [key])
        entity = self.builder.first(spec)
        if entity is None:
            raise ResourceNotFoundError(ctx.descriptor.name, key)
        return entity

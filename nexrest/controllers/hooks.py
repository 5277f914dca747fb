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

"""Hook interfaces for batch operations.

Every hook returns a ``HookResult``. ``HookResult.proceed()`` lets the
pipeline continue; ``HookResult.respond(response)`` ends it, commits the
transaction and hands ``response`` back to the caller as is.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from ..orm.descriptor import ModelDescriptor
from ..orm.entity import Entity
from ..orm.filters import FilterNode
from ..orm.query import RelationRequest
from .parser import ParsedQuery
from .request import ResourceRequest

logger = logging.getLogger(__name__)


class BatchVerb(str, Enum):
    STORE = "store"
    UPDATE = "update"
    DESTROY = "destroy"
    RESTORE = "restore"


@dataclass
class BatchContext:
    """State shared by every hook of one batch.

    Attributes:
        verb: The batch verb being executed
        descriptor: Descriptor of the resource being mutated
        request: The inbound request
        parsed: Parsed query parameters of the request
        requested_relations: Relations attached to re-fetched entities
        scopes: Filters every target must satisfy (e.g. a parent constraint)
        attributes: Attributes forced onto every stored entity
        force: Whether destroy was asked to skip soft deletion
        entities: Re-fetched entities processed so far, in order
    """

    verb: BatchVerb
    descriptor: ModelDescriptor
    request: ResourceRequest
    parsed: ParsedQuery
    requested_relations: frozenset[RelationRequest]
    scopes: tuple[FilterNode, ...] = ()
    attributes: dict[str, Any] = field(default_factory=dict)
    force: bool = False
    entities: list[Entity] = field(default_factory=list)


@dataclass
class BatchHookInput:
    """Input data passed to batch-level hooks."""

    context: BatchContext

    @property
    def entities(self) -> list[Entity]:
        return self.context.entities


@dataclass
class EntityHookInput:
    """Input data passed to per-entity hooks.

    ``entity`` may be modified in place. Attribute changes made in
    ``before_save`` are persisted.
    """

    context: BatchContext
    entity: Entity


@dataclass(frozen=True)
class HookResult:
    """Typed outcome of a hook: continue, or respond with a value."""

    responds: bool = False
    response: Any = None

    @classmethod
    def proceed(cls) -> HookResult:
        return cls()

    @classmethod
    def respond(cls, response: Any) -> HookResult:
        return cls(responds=True, response=response)


class BatchHook(Protocol):
    def __call__(self, hook_input: BatchHookInput) -> HookResult: ...


class EntityHook(Protocol):
    def __call__(self, hook_input: EntityHookInput) -> HookResult: ...


class ResourceHooks:
    """Extension points of one batch verb. Override the ones you need.

    Order per batch: ``before_batch``, then per entity ``before_action``,
    ``before_save`` (store/update), the mutation, ``before_fresh``, the
    re-fetch, ``after_save`` (store/update), ``after_action``; finally
    ``after_batch``.
    """

    def before_batch(self, hook_input: BatchHookInput) -> HookResult:
        return HookResult.proceed()

    def after_batch(self, hook_input: BatchHookInput) -> HookResult:
        return HookResult.proceed()

    def before_action(self, hook_input: EntityHookInput) -> HookResult:
        return HookResult.proceed()

    def before_save(self, hook_input: EntityHookInput) -> HookResult:
        return HookResult.proceed()

    def before_fresh(self, hook_input: EntityHookInput) -> HookResult:
        return HookResult.proceed()

    def after_save(self, hook_input: EntityHookInput) -> HookResult:
        return HookResult.proceed()

    def after_action(self, hook_input: EntityHookInput) -> HookResult:
        return HookResult.proceed()


class FunctionHooks(ResourceHooks):
    """Wraps plain callables into a hook set."""

    def __init__(
        self,
        *,
        before_batch: BatchHook | None = None,
        after_batch: BatchHook | None = None,
        before_action: EntityHook | None = None,
        before_save: EntityHook | None = None,
        before_fresh: EntityHook | None = None,
        after_save: EntityHook | None = None,
        after_action: EntityHook | None = None,
        name: str | None = None,
    ) -> None:
        self._hooks: dict[str, Callable[[Any], HookResult] | None] = {
            "before_batch": before_batch,
            "after_batch": after_batch,
            "before_action": before_action,
            "before_save": before_save,
            "before_fresh": before_fresh,
            "after_save": after_save,
            "after_action": after_action,
        }
        self.name = name or "function_hooks"

    def _call(self, point: str, hook_input: Any) -> HookResult:
        hook = self._hooks[point]
        if hook is None:
            return HookResult.proceed()
        return hook(hook_input)

    def before_batch(self, hook_input: BatchHookInput) -> HookResult:
        return self._call("before_batch", hook_input)

    def after_batch(self, hook_input: BatchHookInput) -> HookResult:
        return self._call("after_batch", hook_input)

    def before_action(self, hook_input: EntityHookInput) -> HookResult:
        return self._call("before_action", hook_input)

    def before_save(self, hook_input: EntityHookInput) -> HookResult:
        return self._call("before_save", hook_input)

    def before_fresh(self, hook_input: EntityHookInput) -> HookResult:
        return self._call("before_fresh", hook_input)

    def after_save(self, hook_input: EntityHookInput) -> HookResult:
        return self._call("after_save", hook_input)

    def after_action(self, hook_input: EntityHookInput) -> HookResult:
        return self._call("after_action", hook_input)

    def __repr__(self) -> str:  # pragma: no cover - helper for debugging
        points = [point for point, hook in self._hooks.items() if hook is not None]
        return f"FunctionHooks(name={self.name}, hooks={points})"


class HookChain(ResourceHooks):
    """Runs several hook sets in order; the first one that responds wins."""

    def __init__(self, hooks: list[ResourceHooks] | None = None) -> None:
        self.hooks: list[ResourceHooks] = hooks or []

    def add(self, hooks: ResourceHooks) -> None:
        self.hooks.append(hooks)

    def __bool__(self) -> bool:
        return bool(self.hooks)

    def __len__(self) -> int:
        return len(self.hooks)

    def _run(self, point: str, hook_input: Any) -> HookResult:
        for hooks in self.hooks:
            result = getattr(hooks, point)(hook_input)
            if not isinstance(result, HookResult):
                raise TypeError(f"Hook {hooks.__class__.__name__}.{point} must return a HookResult, got {result!r}")
            if result.responds:
                logger.info("Hook %s (%s) responded", hooks.__class__.__name__, point)
                return result
        return HookResult.proceed()

    def before_batch(self, hook_input: BatchHookInput) -> HookResult:
        return self._run("before_batch", hook_input)

    def after_batch(self, hook_input: BatchHookInput) -> HookResult:
        return self._run("after_batch", hook_input)

    def before_action(self, hook_input: EntityHookInput) -> HookResult:
        return self._run("before_action", hook_input)

    def before_save(self, hook_input: EntityHookInput) -> HookResult:
        return self._run("before_save", hook_input)

    def before_fresh(self, hook_input: EntityHookInput) -> HookResult:
        return self._run("before_fresh", hook_input)

    def after_save(self, hook_input: EntityHookInput) -> HookResult:
        return self._run("after_save", hook_input)

    def after_action(self, hook_input: EntityHookInput) -> HookResult:
        return self._run("after_action", hook_input)

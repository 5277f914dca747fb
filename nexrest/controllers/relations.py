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

"""Requested relations: parsing, allow-listing and the response guard."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..config import RestConfig
from ..errors import MalformedRequestError, NestingLimitExceededError, RelationNotAllowedError
from ..orm.descriptor import DescriptorRegistry, ModelDescriptor
from ..orm.entity import Entity
from ..orm.query import RelationPagination, RelationRequest
from .parser import FilterParser, split_list
from .request import ResourceRequest, coerce_int

logger = logging.getLogger(__name__)


def allowed_paths(requested: Iterable[RelationRequest]) -> set[str]:
    """Requested paths plus every prefix of them."""
    paths: set[str] = set()
    for request in requested:
        segments = request.segments
        for end in range(1, len(segments) + 1):
            paths.add(".".join(segments[:end]))
    return paths


class RelationsResolver:
    """Resolves the relations a request asks for and guards responses against others.

    Relations come from the ``include`` parameter (``"author,comments.author"``)
    and from the ``includes`` body list, whose entries may constrain a relation:

        {"relation": "comments", "filters": [...], "sort": "-id", "limit": 5, "page": 1}
    """

    def __init__(self, descriptor: ModelDescriptor, registry: DescriptorRegistry, config: RestConfig) -> None:
        self.descriptor = descriptor
        self.registry = registry
        self.config = config

    def requested_relations(self, request: ResourceRequest) -> frozenset[RelationRequest]:
        """Every relation requested, validated against the allow-list.

        Raises:
            RelationNotAllowedError: If a path is unknown or not allow-listed
            NestingLimitExceededError: If a path is nested deeper than ``max_nested_depth``
            MalformedRequestError: If an ``includes`` entry has the wrong shape
        """
        requests: dict[str, RelationRequest] = {}
        for path in split_list(request.input("include"), "include"):
            self._check_path(path)
            requests[path] = RelationRequest(path)

        includes = request.body.get("includes")
        if includes is not None:
            if not isinstance(includes, list):
                raise MalformedRequestError("'includes' must be a list of relation entries")
            for entry in includes:
                relation_request = self._parse_include(entry)
                requests[relation_request.path] = relation_request

        return frozenset(requests.values())

    def _parse_include(self, entry: Any) -> RelationRequest:
        if not isinstance(entry, Mapping) or not isinstance(entry.get("relation"), str):
            raise MalformedRequestError(f"Include entry must be an object with a relation, got {entry!r}")
        path = entry["relation"]
        target = self._check_path(path)
        parser = FilterParser(target, self.config)

        pagination = None
        if entry.get("limit") is not None:
            limit = coerce_int(entry["limit"], f"{path}.limit", minimum=1)
            page = coerce_int(entry.get("page", 1), f"{path}.page", minimum=1)
            pagination = RelationPagination(limit=limit, page=page)

        return RelationRequest(
            path=path,
            filters=parser.parse_filters(entry.get("filters")),
            sort=parser.parse_sort_value(entry.get("sort")),
            pagination=pagination,
        )

    def _check_path(self, path: str) -> ModelDescriptor:
        """Validate a relation path. Returns the descriptor at its end."""
        depth = len(path.split(".")) - 1
        if depth > self.config.max_nested_depth:
            logger.debug("Rejected relation '%s' on '%s': depth %d", path, self.descriptor.name, depth)
            raise NestingLimitExceededError(depth, self.config.max_nested_depth, what="relations")
        if not self.is_allowed(path):
            logger.debug("Rejected relation '%s' on '%s': not allow-listed", path, self.descriptor.name)
            raise RelationNotAllowedError(path, self.descriptor.name)
        try:
            hops = self.registry.resolve_path(self.descriptor, path)
        except KeyError:
            raise RelationNotAllowedError(path, self.descriptor.name) from None
        return hops[-1][1]

    def is_allowed(self, path: str) -> bool:
        """Whether ``path`` matches an allow-list entry or is a prefix of one."""
        for pattern in self.descriptor.includes:
            if pattern == "*" or pattern == path:
                return True
            wildcard = pattern.endswith(".*")
            concrete = pattern[:-2] if wildcard else pattern
            if wildcard and (path == concrete or path.startswith(concrete + ".")):
                return True
            if concrete.startswith(path + "."):
                return True
        return False

    # ------------------------------------------------------------------
    # Guard
    # ------------------------------------------------------------------

    def guard_relations_for_collection(
        self,
        entities: list[Entity],
        requested_relations: Iterable[RelationRequest],
    ) -> list[Entity]:
        """Strip every loaded relation that was not requested, recursively."""
        allowed = allowed_paths(requested_relations)
        for entity in entities:
            _strip(entity, allowed, "")
        return entities

    def guard_relations(self, entity: Entity, requested_relations: Iterable[RelationRequest]) -> Entity:
        _strip(entity, allowed_paths(requested_relations), "")
        return entity


def _strip(entity: Entity, allowed: set[str], prefix: str) -> None:
    for name in list(entity.relations):
        path = f"{prefix}{name}"
        if path not in allowed:
            logger.debug("Guard stripped relation '%s' from '%s' %r", path, entity.resource, entity.key)
            del entity.relations[name]
            continue
        value = entity.relations[name]
        children = value if isinstance(value, list) else [value] if value is not None else []
        for child in children:
            _strip(child, allowed, f"{path}.")

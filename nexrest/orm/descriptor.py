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

"""Model descriptors: what a resource exposes to the query pipeline."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlmodel import SQLModel

from ..errors import ConfigError, MalformedRequestError

logger = logging.getLogger(__name__)


class RelationKind(str, Enum):
    """Supported association shapes."""

    HAS_MANY = "has_many"
    HAS_ONE = "has_one"
    BELONGS_TO = "belongs_to"


@dataclass(frozen=True)
class RelationDescriptor:
    """A named association from one resource to another.

    Attributes:
        name: Relation name used in include paths
        kind: Association shape
        target: Name of the related resource
        foreign_key: Column holding the reference. Lives on the target for
            has_many/has_one and on the owner for belongs_to.
        local_key: Referenced column. Defaults to the owner key for
            has_many/has_one and to the target key for belongs_to.
    """

    name: str
    kind: RelationKind
    target: str
    foreign_key: str
    local_key: str | None = None

    @property
    def many(self) -> bool:
        return self.kind == RelationKind.HAS_MANY

    def joining_fields(self, owner: ModelDescriptor, target: ModelDescriptor) -> tuple[str, str]:
        """(owner field, target field) pair whose values are equal for related rows."""
        if self.kind == RelationKind.BELONGS_TO:
            return self.foreign_key, self.local_key or target.key_name
        return self.local_key or owner.key_name, self.foreign_key


@dataclass(frozen=True)
class ModelDescriptor:
    """Everything the controller layer knows about one resource.

    Allow-lists are explicit: a field that is not listed cannot be filtered,
    sorted or searched, and a relation path that is not listed in ``includes``
    cannot be loaded. ``includes`` accepts ``*`` and ``prefix.*`` wildcards.
    """

    name: str
    model_class: type[SQLModel]
    key_name: str = "id"
    filterable: tuple[str, ...] = ()
    sortable: tuple[str, ...] = ()
    searchable: tuple[str, ...] = ()
    includes: tuple[str, ...] = ()
    aggregates: tuple[str, ...] = ()
    relations: Mapping[str, RelationDescriptor] = field(default_factory=dict)
    fillable: tuple[str, ...] | None = None
    soft_deletes: bool = False
    deleted_at_column: str = "deleted_at"

    @property
    def columns(self) -> tuple[str, ...]:
        """Column names of the backing table."""
        table = self.model_class.__table__  # type: ignore[attr-defined]
        return tuple(column.name for column in table.columns)

    @property
    def fillable_fields(self) -> tuple[str, ...]:
        if self.fillable is not None:
            return self.fillable
        excluded = {self.key_name, self.deleted_at_column} if self.soft_deletes else {self.key_name}
        return tuple(name for name in self.columns if name not in excluded)

    def relation(self, name: str) -> RelationDescriptor:
        try:
            return self.relations[name]
        except KeyError:
            raise KeyError(f"Relation '{name}' is not declared on resource '{self.name}'") from None

    def coerce_key(self, raw: Any) -> Any:
        """Convert a key taken from a request (often a string) to the key column type."""
        table = self.model_class.__table__  # type: ignore[attr-defined]
        try:
            python_type = table.c[self.key_name].type.python_type
        except NotImplementedError:
            return raw
        if isinstance(raw, python_type) and not isinstance(raw, bool):
            return raw
        if isinstance(raw, (dict, list, bool)) or raw is None:
            raise MalformedRequestError(f"Invalid key for resource '{self.name}': {raw!r}")
        try:
            return python_type(raw)
        except (TypeError, ValueError):
            raise MalformedRequestError(f"Invalid key for resource '{self.name}': {raw!r}") from None

    def filter_payload(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Keep only mass-assignable fields."""
        allowed = set(self.fillable_fields)
        return {name: value for name, value in payload.items() if name in allowed}


class DescriptorRegistry:
    """Registry of model descriptors, keyed by resource name."""

    def __init__(self, descriptors: list[ModelDescriptor] | None = None) -> None:
        self._descriptors: dict[str, ModelDescriptor] = {}
        for descriptor in descriptors or []:
            self.register(descriptor)

    def register(self, descriptor: ModelDescriptor) -> ModelDescriptor:
        if descriptor.name in self._descriptors:
            raise ConfigError(f"Resource '{descriptor.name}' is already registered")
        self._descriptors[descriptor.name] = descriptor
        return descriptor

    def descriptor(self, name: str) -> ModelDescriptor:
        try:
            return self._descriptors[name]
        except KeyError:
            raise ConfigError(f"Unknown resource: '{name}'") from None

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    def resolve_path(self, descriptor: ModelDescriptor, path: str) -> list[tuple[RelationDescriptor, ModelDescriptor]]:
        """Walk a dot-separated relation path.

        Returns:
            One (relation, target descriptor) pair per path segment

        Raises:
            KeyError: If a segment is not a declared relation
        """
        hops: list[tuple[RelationDescriptor, ModelDescriptor]] = []
        current = descriptor
        for segment in path.split("."):
            relation = current.relation(segment)
            if relation.target not in self._descriptors:
                raise KeyError(f"Relation target '{relation.target}' is not registered")
            current = self._descriptors[relation.target]
            hops.append((relation, current))
        return hops

    def validate(self) -> None:
        """Check every descriptor against its model and the other registrations.

        Raises:
            ConfigError: On the first inconsistency found
        """
        for descriptor in self._descriptors.values():
            self._validate_descriptor(descriptor)
        logger.debug("Validated %d resource descriptors", len(self._descriptors))

    def _validate_descriptor(self, descriptor: ModelDescriptor) -> None:
        columns = set(descriptor.columns)
        name = descriptor.name

        if descriptor.key_name not in columns:
            raise ConfigError(f"Key column '{descriptor.key_name}' missing on resource '{name}'")
        if descriptor.soft_deletes and descriptor.deleted_at_column not in columns:
            raise ConfigError(f"Soft-delete column '{descriptor.deleted_at_column}' missing on resource '{name}'")

        for usage, fields in (
            ("filterable", descriptor.filterable),
            ("sortable", descriptor.sortable),
            ("searchable", descriptor.searchable),
            ("fillable", descriptor.fillable or ()),
        ):
            unknown = [f for f in fields if f not in columns]
            if unknown:
                raise ConfigError(f"Unknown {usage} fields on resource '{name}': {unknown}")

        for relation in descriptor.relations.values():
            if relation.target not in self._descriptors:
                raise ConfigError(f"Relation '{name}.{relation.name}' targets unknown resource '{relation.target}'")
            target = self._descriptors[relation.target]
            owner_of_fk = descriptor if relation.kind == RelationKind.BELONGS_TO else target
            if relation.foreign_key not in owner_of_fk.columns:
                raise ConfigError(
                    f"Foreign key '{relation.foreign_key}' of relation '{name}.{relation.name}' "
                    f"missing on resource '{owner_of_fk.name}'"
                )

        for path in descriptor.includes:
            if path == "*":
                continue
            concrete = path[:-2] if path.endswith(".*") else path
            try:
                self.resolve_path(descriptor, concrete)
            except KeyError as e:
                raise ConfigError(f"Include path '{path}' does not resolve on resource '{name}': {e}") from e

        for relation_name in descriptor.aggregates:
            if relation_name not in descriptor.relations:
                raise ConfigError(f"Aggregate relation '{relation_name}' is not declared on resource '{name}'")

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

"""Materialized query results."""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, Field


class Entity(BaseModel):
    """A persisted record as returned by a query builder.

    The key is frozen: hooks may change attribute values and attach or detach
    relations, never the identity of the record.

    Example:
        >>> post = Entity(resource="posts", key=1, attributes={"id": 1, "title": "Hello"})
        >>> post.relations["tags"] = [Entity(resource="tags", key=3, attributes={"id": 3, "name": "news"})]
        >>> post.to_dict()
        {'id': 1, 'title': 'Hello', 'tags': [{'id': 3, 'name': 'news'}]}
    """

    resource: str
    key: Any = Field(frozen=True)
    attributes: dict[str, Any] = Field(default_factory=dict)
    relations: dict[str, Entity | list[Entity] | None] = Field(default_factory=dict)
    was_recently_created: bool = False

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def loaded_relation_paths(self, prefix: str = "") -> set[str]:
        """Dot paths of every relation currently attached, recursively."""
        paths: set[str] = set()
        for name, value in self.relations.items():
            path = f"{prefix}{name}"
            paths.add(path)
            for child in _as_list(value):
                paths |= child.loaded_relation_paths(prefix=f"{path}.")
        return paths

    def to_dict(self) -> dict[str, Any]:
        """Serialize attributes and attached relations."""
        data = dict(self.attributes)
        for name, value in self.relations.items():
            if value is None:
                data[name] = None
            elif isinstance(value, list):
                data[name] = [child.to_dict() for child in value]
            else:
                data[name] = value.to_dict()
        return data


def _as_list(value: Entity | list[Entity] | None) -> list[Entity]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


class Page(BaseModel):
    """One page of a paginated query."""

    items: list[Entity]
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def first_item(self) -> int | None:
        """1-based position of the first item, None for an empty page."""
        if not self.items:
            return None
        return (self.page - 1) * self.per_page + 1

    @property
    def last_item(self) -> int | None:
        if not self.items:
            return None
        return (self.page - 1) * self.per_page + len(self.items)

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

"""Response envelopes for entity collections and single entities."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel

from ..orm.entity import Entity, Page
from ..orm.query import RelationRequest
from .relations import RelationsResolver
from .request import ResourceRequest


class Envelope(BaseModel):
    """Response body: ``data`` plus ``links``/``meta`` for paginated collections."""

    data: dict[str, Any] | list[dict[str, Any]]
    links: dict[str, str | None] | None = None
    meta: dict[str, Any] | None = None

    @property
    def paginated(self) -> bool:
        return self.meta is not None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"data": self.data}
        if self.links is not None:
            payload["links"] = self.links
        if self.meta is not None:
            payload["meta"] = self.meta
        return payload


def page_url(path: str, page: int) -> str:
    return f"{path}?page={page}"


class ResourceCollectionResponder:
    """Guards relations and shapes entities into envelopes."""

    def __init__(self, resolver: RelationsResolver) -> None:
        self.resolver = resolver

    def respond(
        self,
        result: Page | list[Entity],
        requested_relations: Iterable[RelationRequest],
        request: ResourceRequest,
    ) -> Envelope:
        """Envelope for a collection.

        A ``Page`` gets ``links`` and ``meta``; a plain list (pagination
        disabled, batch results) gets ``data`` only.
        """
        requested = list(requested_relations)
        if isinstance(result, Page):
            items = self.resolver.guard_relations_for_collection(result.items, requested)
            return Envelope(
                data=[entity.to_dict() for entity in items],
                links=self._links(result, request.path),
                meta=self._meta(result, request.path),
            )
        items = self.resolver.guard_relations_for_collection(list(result), requested)
        return Envelope(data=[entity.to_dict() for entity in items])

    def respond_entity(self, entity: Entity, requested_relations: Iterable[RelationRequest]) -> Envelope:
        return Envelope(data=self.resolver.guard_relations(entity, requested_relations).to_dict())

    @staticmethod
    def _meta(page: Page, path: str) -> dict[str, Any]:
        return {
            "current_page": page.page,
            "from": page.first_item,
            "last_page": page.last_page,
            "path": path,
            "per_page": page.per_page,
            "to": page.last_item,
            "total": page.total,
        }

    @staticmethod
    def _links(page: Page, path: str) -> dict[str, str | None]:
        return {
            "first": page_url(path, 1),
            "last": page_url(path, page.last_page),
            "prev": page_url(path, page.page - 1) if page.page > 1 else None,
            "next": page_url(path, page.page + 1) if page.page < page.last_page else None,
        }

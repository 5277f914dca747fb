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


"""Resource HTTP endpoints.

Every resource gets the same route table:

    GET     /posts                  index
    POST    /posts/search           search
    POST    /posts                  store
    POST    /posts/batch            batch store
    PATCH   /posts/batch            batch update
    DELETE  /posts/batch            batch destroy
    POST    /posts/batch/restore    batch restore
    GET     /posts/{key}            show
    PATCH   /posts/{key}            update (PUT is accepted too)
    DELETE  /posts/{key}            destroy
    POST    /posts/{key}/restore    restore

Relation routers mount the same table below ``/{parent}/{parent_key}/{relation}``.
Handlers are synchronous: FastAPI runs them in its threadpool, so each request
keeps the transaction of its batch on one thread.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Body, Request

from ...controllers.controller import RelationController, ResourceController
from ...controllers.request import ResourceRequest
from ...controllers.responder import Envelope

logger = logging.getLogger(__name__)

ControllerResolver = Callable[[Request], ResourceController]


def to_resource_request(request: Request, body: dict[str, Any] | None = None) -> ResourceRequest:
    """Translate a Starlette request into the transport-independent request."""
    return ResourceRequest(
        path=request.url.path,
        query=dict(request.query_params),
        body=body or {},
        user=getattr(request.state, "user", None),
    )


def _render(result: Envelope | Any) -> Any:
    # Hook responses are returned untouched
    if isinstance(result, Envelope):
        return result.to_payload()
    return result


def _add_routes(router: APIRouter, resolve: ControllerResolver) -> None:
    # Batch routes come first so "batch" is never captured as a key

    @router.get("", response_model=None)
    def index(request: Request) -> Any:
        return _render(resolve(request).index(to_resource_request(request)))

    @router.post("/search", response_model=None)
    def search(request: Request, body: dict[str, Any] | None = Body(default=None)) -> Any:
        return _render(resolve(request).search(to_resource_request(request, body)))

    @router.post("", status_code=201, response_model=None)
    def store(request: Request, body: dict[str, Any] | None = Body(default=None)) -> Any:
        return _render(resolve(request).store(to_resource_request(request, body)))

    @router.post("/batch", status_code=201, response_model=None)
    def batch_store(request: Request, body: dict[str, Any] | None = Body(default=None)) -> Any:
        return _render(resolve(request).batch_store(to_resource_request(request, body)))

    @router.patch("/batch", response_model=None)
    def batch_update(request: Request, body: dict[str, Any] | None = Body(default=None)) -> Any:
        return _render(resolve(request).batch_update(to_resource_request(request, body)))

    @router.delete("/batch", response_model=None)
    def batch_destroy(request: Request, body: dict[str, Any] | None = Body(default=None)) -> Any:
        return _render(resolve(request).batch_destroy(to_resource_request(request, body)))

    @router.post("/batch/restore", response_model=None)
    def batch_restore(request: Request, body: dict[str, Any] | None = Body(default=None)) -> Any:
        return _render(resolve(request).batch_restore(to_resource_request(request, body)))

    @router.get("/{key}", response_model=None)
    def show(request: Request, key: str) -> Any:
        return _render(resolve(request).show(to_resource_request(request), key))

    @router.api_route("/{key}", methods=["PATCH", "PUT"], response_model=None)
    def update(request: Request, key: str, body: dict[str, Any] | None = Body(default=None)) -> Any:
        return _render(resolve(request).update(to_resource_request(request, body), key))

    @router.delete("/{key}", response_model=None)
    def destroy(request: Request, key: str) -> Any:
        return _render(resolve(request).destroy(to_resource_request(request), key))

    @router.post("/{key}/restore", response_model=None)
    def restore(request: Request, key: str) -> Any:
        return _render(resolve(request).restore(to_resource_request(request), key))


def create_resource_router(controller: ResourceController, prefix: str | None = None) -> APIRouter:
    """Create the router of one resource.

    Args:
        controller: Controller serving the resource
        prefix: Mount path (default: ``/<resource name>``)

    Returns:
        Configured APIRouter with all resource endpoints
    """
    router = APIRouter(prefix=prefix or f"/{controller.name}", tags=[controller.name])
    _add_routes(router, lambda request: controller)
    logger.debug("Created router for resource '%s'", controller.name)
    return router


def create_relation_router(relation_controller: RelationController, prefix: str | None = None) -> APIRouter:
    """Create the router of one relation endpoint, e.g. ``/posts/{parent_key}/comments``.

    Args:
        relation_controller: Controller of the parent's relation
        prefix: Mount path (default: ``/<parent>/{parent_key}/<relation>``)

    Returns:
        Configured APIRouter with all relation endpoints
    """
    parent = relation_controller.parent_binding.name
    relation = relation_controller.relation.name
    router = APIRouter(prefix=prefix or f"/{parent}/{{parent_key}}/{relation}", tags=[parent])

    def resolve(request: Request) -> ResourceController:
        return relation_controller.for_parent(request.path_params["parent_key"])

    _add_routes(router, resolve)
    logger.debug("Created router for relation '%s'", relation_controller.name)
    return router

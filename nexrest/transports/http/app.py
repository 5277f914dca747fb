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


"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ...config import RestConfig
from ...controllers.controller import RelationController, ResourceController
from ...controllers.registry import ResourceRegistry
from ...orm.builder import QueryBuilder
from .config import HTTPConfig
from .errors import install_exception_handlers
from .routes import create_relation_router, create_resource_router

logger = logging.getLogger(__name__)


def create_app(
    registry: ResourceRegistry,
    builder: QueryBuilder,
    *,
    rest_config: RestConfig | None = None,
    config: HTTPConfig | None = None,
    relations: Iterable[tuple[str, str]] = (),
) -> FastAPI:
    """Expose every bound resource over HTTP.

    Args:
        registry: Registry holding the resource bindings; finalized if it is not yet
        builder: Query builder shared by every controller
        rest_config: Parsing and pagination configuration
        config: HTTP-specific configuration (default: HTTPConfig())
        relations: (parent resource, relation name) pairs to expose as nested routes

    Example:
        >>> builder = SQLQueryBuilder.from_url("sqlite:///blog.db", registry)
        >>> app = create_app(registry, builder, relations=[("posts", "comments")])
        >>> uvicorn.run(app)
    """
    config = config or HTTPConfig()
    rest_config = rest_config or RestConfig()
    if not registry.finalized:
        registry.finalize()

    app = FastAPI(title=config.title)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=config.cors_credentials,
        allow_methods=config.cors_methods,
        allow_headers=config.cors_headers,
    )
    install_exception_handlers(app)

    # Nested routes first: their static segments must win over "/{key}"
    for parent, relation in relations:
        relation_controller = RelationController(registry.binding(parent), relation, builder, registry, rest_config)
        app.include_router(create_relation_router(relation_controller), prefix=config.api_prefix)

    for descriptor in registry:
        controller = ResourceController(registry.binding(descriptor.name), builder, registry, rest_config)
        app.include_router(create_resource_router(controller), prefix=config.api_prefix)

    logger.info("Created HTTP app with %d resources", len(registry))
    return app

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


"""
Pytest configuration and fixtures for nexrest tests.

This module provides shared fixtures for all tests in the nexrest test
suite. The ``builder`` fixture is parametrized so every test using it runs
against both the in-memory and the SQL query builder.
"""

import logging

import pytest

from nexrest.config import RestConfig
from nexrest.controllers import ResourceRegistry
from nexrest.orm import InMemoryQueryBuilder, QueryBuilder, SQLQueryBuilder
from tests.utils.blog import MODELS, build_registry, seed_blog


@pytest.fixture(autouse=True)
def _debug_logging(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="nexrest")


@pytest.fixture
def rest_config() -> RestConfig:
    return RestConfig()


@pytest.fixture
def registry() -> ResourceRegistry:
    return build_registry()


def make_builder(kind: str, registry: ResourceRegistry) -> QueryBuilder:
    """Create an empty builder of the given kind with the blog tables set up."""
    builder: QueryBuilder
    if kind == "memory":
        builder = InMemoryQueryBuilder(registry)
    else:
        builder = SQLQueryBuilder.from_url("sqlite://", registry)
    builder.setup_models(MODELS)
    return builder


@pytest.fixture(params=["memory", "sql"])
def builder(request: pytest.FixtureRequest, registry: ResourceRegistry) -> QueryBuilder:
    """A seeded builder; runs the test once per backend."""
    builder = make_builder(request.param, registry)
    seed_blog(builder)
    return builder


@pytest.fixture
def sql_builder(registry: ResourceRegistry) -> SQLQueryBuilder:
    builder = make_builder("sql", registry)
    seed_blog(builder)
    assert isinstance(builder, SQLQueryBuilder)
    return builder

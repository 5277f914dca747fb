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

"""ORM layer for SQLModel."""

from .builder import QueryBuilder
from .descriptor import DescriptorRegistry, ModelDescriptor, RelationDescriptor, RelationKind
from .entity import Entity, Page
from .filters import (
    Combinator,
    ComparisonFilter,
    FilterNode,
    FilterOperator,
    GroupFilter,
    SearchTerm,
    evaluate,
    search_to_sqlalchemy,
    to_sqlalchemy,
)
from .memory_builder import InMemoryQueryBuilder
from .query import (
    AggregateRequest,
    PaginationRequest,
    QuerySpec,
    RelationPagination,
    RelationRequest,
    SortDirection,
    SortDirective,
    TrashedScope,
)
from .sql_builder import SQLQueryBuilder

__all__ = [
    # QueryBuilder classes
    "QueryBuilder",
    "InMemoryQueryBuilder",
    "SQLQueryBuilder",
    # Descriptors
    "DescriptorRegistry",
    "ModelDescriptor",
    "RelationDescriptor",
    "RelationKind",
    # Results
    "Entity",
    "Page",
    # Query specifications
    "AggregateRequest",
    "PaginationRequest",
    "QuerySpec",
    "RelationPagination",
    "RelationRequest",
    "SortDirection",
    "SortDirective",
    "TrashedScope",
    # Filter DSL
    "Combinator",
    "ComparisonFilter",
    "FilterNode",
    "FilterOperator",
    "GroupFilter",
    "SearchTerm",
    "evaluate",
    "search_to_sqlalchemy",
    "to_sqlalchemy",
]

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


"""Tests for the query compiler."""

from __future__ import annotations

import pytest

from nexrest.config import RestConfig
from nexrest.controllers.compiler import QueryCompiler
from nexrest.controllers.parser import FilterParser, ParsedQuery
from nexrest.orm import ComparisonFilter, RelationRequest, TrashedScope
from nexrest.orm.query import AggregateRequest, SortDirection, SortDirective
from tests.utils.blog import AUTHORS, POSTS


@pytest.fixture
def compiler() -> QueryCompiler:
    return QueryCompiler(POSTS, RestConfig())


def parse(params: dict) -> ParsedQuery:
    return FilterParser(POSTS, RestConfig()).parse_query(params)


class TestBuildFetchQuery:
    """Tests for clause composition."""

    def test_empty_request(self, compiler: QueryCompiler) -> None:
        spec = compiler.build_fetch_query(ParsedQuery(), [])
        assert spec.descriptor is POSTS
        assert spec.wheres == ()
        assert spec.search_term is None
        assert spec.trashed == TrashedScope.EXCLUDE
        assert spec.columns is None

    def test_scopes_come_before_filters(self, compiler: QueryCompiler) -> None:
        scope = ComparisonFilter.eq("author_id", 1)
        parsed = parse({"filters": [{"field": "status", "value": "draft"}]})
        spec = compiler.build_fetch_query(parsed, [], [scope])
        assert spec.wheres[0] == scope
        assert spec.wheres[1] == parsed.filters

    def test_search_sort_and_trashed(self, compiler: QueryCompiler) -> None:
        spec = compiler.build_fetch_query(parse({"search": "news", "sort": "-views", "only_trashed": "1"}), [])
        assert spec.search_term is not None
        assert spec.sorts == (SortDirective("views", SortDirection.DESC),)
        assert spec.trashed == TrashedScope.ONLY

    def test_with_trashed(self, compiler: QueryCompiler) -> None:
        assert compiler.build_fetch_query(parse({"with_trashed": "1"}), []).trashed == TrashedScope.INCLUDE

    def test_relations_are_sorted_by_path(self, compiler: QueryCompiler) -> None:
        spec = compiler.build_fetch_query(ParsedQuery(), [RelationRequest("comments"), RelationRequest("author")])
        assert [request.path for request in spec.includes] == ["author", "comments"]

    def test_sort_on_aggregate_adds_the_aggregate(self, compiler: QueryCompiler) -> None:
        spec = compiler.build_fetch_query(parse({"sort": "-comments_count"}), [])
        assert spec.aggregates == (AggregateRequest("comments"),)

    def test_requested_aggregate_not_duplicated(self, compiler: QueryCompiler) -> None:
        spec = compiler.build_fetch_query(parse({"sort": "comments_count", "with_count": "comments"}), [])
        assert spec.aggregates == (AggregateRequest("comments"),)

    def test_projection_keeps_key_and_joining_columns(self, compiler: QueryCompiler) -> None:
        spec = compiler.build_fetch_query(parse({"fields": "title"}), [RelationRequest("author")])
        assert spec.columns == ("id", "author_id", "title")

    def test_projection_skips_foreign_keys_of_relations_not_loaded(self, compiler: QueryCompiler) -> None:
        assert compiler.build_fetch_query(parse({"fields": "title"}), []).columns == ("id", "title")
        spec = compiler.build_fetch_query(parse({"fields": "title"}), [RelationRequest("comments")])
        assert spec.columns == ("id", "title")

    def test_projection_of_has_many_owner(self) -> None:
        compiler = QueryCompiler(AUTHORS, RestConfig())
        parsed = FilterParser(AUTHORS, RestConfig()).parse_query({"fields": "name"})
        assert compiler.build_fetch_query(parsed, [RelationRequest("posts")]).columns == ("id", "name")


class TestBuildBatchFetchQuery:
    def test_narrows_to_keys(self, compiler: QueryCompiler) -> None:
        spec = compiler.build_batch_fetch_query(ParsedQuery(), [], [3, 1])
        assert spec.wheres[-1] == ComparisonFilter.in_("id", [3, 1])

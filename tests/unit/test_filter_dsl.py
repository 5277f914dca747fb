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


"""Tests for the filter DSL models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from nexrest.orm.filters import (
    Combinator,
    ComparisonFilter,
    FilterOperator,
    GroupFilter,
    SearchTerm,
    filter_depth,
    filter_fields,
    or_runs,
)

# ============================================================================
# ComparisonFilter
# ============================================================================


class TestComparisonFilter:
    """Tests for ComparisonFilter construction and validation."""

    def test_factory_methods_set_operator(self) -> None:
        assert ComparisonFilter.eq("a", 1).op == FilterOperator.EQ
        assert ComparisonFilter.ne("a", 1).op == FilterOperator.NE
        assert ComparisonFilter.gte("a", 1).op == FilterOperator.GTE
        assert ComparisonFilter.like("a", "x%").op == FilterOperator.LIKE
        assert ComparisonFilter.not_in("a", [1]).op == FilterOperator.NOT_IN
        assert ComparisonFilter.is_null("a").value is None

    def test_default_combinator_is_and(self) -> None:
        assert ComparisonFilter.eq("a", 1).combinator == Combinator.AND

    def test_or_returns_copy(self) -> None:
        """Test that or_() leaves the original leaf untouched."""
        leaf = ComparisonFilter.eq("a", 1)
        joined = leaf.or_()
        assert joined.combinator == Combinator.OR
        assert leaf.combinator == Combinator.AND

    def test_list_operator_requires_list(self) -> None:
        with pytest.raises(ValidationError):
            ComparisonFilter(field="a", op=FilterOperator.IN, value=1)

    def test_null_operator_rejects_value(self) -> None:
        with pytest.raises(ValidationError):
            ComparisonFilter(field="a", op=FilterOperator.IS_NULL, value=1)

    def test_scalar_operator_rejects_list_and_none(self) -> None:
        with pytest.raises(ValidationError):
            ComparisonFilter(field="a", op=FilterOperator.GT, value=[1, 2])
        with pytest.raises(ValidationError):
            ComparisonFilter(field="a", op=FilterOperator.EQ, value=None)

    def test_empty_in_list_is_valid(self) -> None:
        assert ComparisonFilter.in_("a", []).value == []

    def test_bool_value_preserved(self) -> None:
        assert ComparisonFilter.eq("approved", True).value is True


# ============================================================================
# GroupFilter and helpers
# ============================================================================


class TestGroupFilter:
    """Tests for GroupFilter and tree helpers."""

    def test_any_of_sets_or_on_every_child(self) -> None:
        group = GroupFilter.any_of(ComparisonFilter.eq("a", 1), ComparisonFilter.eq("b", 2))
        assert [child.combinator for child in group.children] == [Combinator.OR, Combinator.OR]

    def test_all_of_resets_or_children(self) -> None:
        group = GroupFilter.all_of(ComparisonFilter.eq("a", 1).or_(), ComparisonFilter.eq("b", 2))
        assert all(child.combinator == Combinator.AND for child in group.children)

    def test_or_runs_split_on_or(self) -> None:
        """Test that a AND b OR c AND d yields two runs."""
        a = ComparisonFilter.eq("a", 1)
        b = ComparisonFilter.eq("b", 1)
        c = ComparisonFilter.eq("c", 1).or_()
        d = ComparisonFilter.eq("d", 1)
        runs = or_runs([a, b, c, d])
        assert [[node.field for node in run] for run in runs] == [["a", "b"], ["c", "d"]]

    def test_or_runs_ignores_first_combinator(self) -> None:
        runs = or_runs([ComparisonFilter.eq("a", 1).or_(), ComparisonFilter.eq("b", 1)])
        assert len(runs) == 1

    def test_or_runs_empty(self) -> None:
        assert or_runs([]) == []

    def test_filter_depth(self) -> None:
        leaf = ComparisonFilter.eq("a", 1)
        assert filter_depth(leaf) == 0
        assert filter_depth(GroupFilter.all_of(leaf)) == 1
        assert filter_depth(GroupFilter.all_of(leaf, GroupFilter.any_of(leaf))) == 2
        assert filter_depth(GroupFilter(children=[])) == 1

    def test_filter_fields(self) -> None:
        tree = GroupFilter.all_of(
            ComparisonFilter.eq("a", 1),
            GroupFilter.any_of(ComparisonFilter.eq("b", 1), ComparisonFilter.is_null("c")),
        )
        assert filter_fields(tree) == {"a", "b", "c"}

    def test_round_trip_through_json(self) -> None:
        """Test that the discriminated tree survives model_dump/model_validate."""
        tree = GroupFilter.all_of(ComparisonFilter.eq("a", 1), GroupFilter.any_of(ComparisonFilter.in_("b", [1, 2])))
        restored = GroupFilter.model_validate(tree.model_dump())
        assert restored == tree


class TestSearchTerm:
    def test_pattern_wraps_value(self) -> None:
        assert SearchTerm(value="news", fields=("title",)).pattern == "%news%"

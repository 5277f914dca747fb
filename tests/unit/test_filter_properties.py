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


"""Property-based tests: the SQL converter and the Python evaluator agree.

Strings are drawn from a small lowercase alphabet because SQLite's LIKE is
case-insensitive for ASCII while the evaluator's LIKE is not.
"""

from __future__ import annotations

from typing import Any

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import create_engine, select
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel

from nexrest.orm.filters import (
    Combinator,
    ComparisonFilter,
    FilterNode,
    FilterOperator,
    GroupFilter,
    evaluate,
    to_sqlalchemy,
)


class PropertySample(SQLModel, table=True):
    __tablename__ = "property_samples"  # type: ignore[assignment]

    id: int = Field(primary_key=True)
    label: str | None = None
    amount: int | None = None


ROWS: list[dict[str, Any]] = [
    {"id": 1, "label": "a", "amount": 0},
    {"id": 2, "label": "ab", "amount": 1},
    {"id": 3, "label": "ba", "amount": 2},
    {"id": 4, "label": None, "amount": 1},
    {"id": 5, "label": "bb", "amount": None},
    {"id": 6, "label": "", "amount": 3},
    {"id": 7, "label": "aab", "amount": -1},
]

ENGINE = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
SQLModel.metadata.create_all(ENGINE, tables=[PropertySample.__table__])  # type: ignore[attr-defined]
with Session(ENGINE) as _session:
    _session.add_all([PropertySample(**row) for row in ROWS])
    _session.commit()


# ============================================================================
# Hypothesis Strategies
# ============================================================================

labels = st.text(alphabet="ab", max_size=3)
patterns = st.text(alphabet="ab%_", max_size=4)
amounts = st.integers(min_value=-2, max_value=4)
combinators = st.sampled_from(list(Combinator))

SCALAR_OPERATORS = [
    FilterOperator.EQ,
    FilterOperator.NE,
    FilterOperator.GT,
    FilterOperator.GTE,
    FilterOperator.LT,
    FilterOperator.LTE,
]


@st.composite
def leaves(draw: st.DrawFn) -> ComparisonFilter:
    """Generate a type-correct leaf over one of the sample columns."""
    field = draw(st.sampled_from(["label", "amount"]))
    values = labels if field == "label" else amounts
    kind = draw(st.sampled_from(["scalar", "like", "list", "null"]))
    combinator = draw(combinators)

    if kind == "scalar":
        op = draw(st.sampled_from(SCALAR_OPERATORS))
        value: Any = draw(values)
    elif kind == "like" and field == "label":
        op, value = FilterOperator.LIKE, draw(patterns)
    elif kind == "list":
        op = draw(st.sampled_from([FilterOperator.IN, FilterOperator.NOT_IN]))
        value = draw(st.lists(values, min_size=1, max_size=3))
    else:
        op = draw(st.sampled_from([FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL]))
        value = None
    return ComparisonFilter(field=field, op=op, value=value, combinator=combinator)


def groups(children: st.SearchStrategy[FilterNode]) -> st.SearchStrategy[GroupFilter]:
    return st.builds(GroupFilter, combinator=combinators, children=st.lists(children, max_size=4))


filter_trees = st.recursive(leaves(), groups, max_leaves=8)


def sql_ids(filter_: FilterNode) -> set[int]:
    table = PropertySample.__table__  # type: ignore[attr-defined]
    with ENGINE.connect() as conn:
        return {row[0] for row in conn.execute(select(table.c.id).where(to_sqlalchemy(filter_, PropertySample)))}


def python_ids(filter_: FilterNode) -> set[int]:
    return {row["id"] for row in ROWS if evaluate(filter_, row)}


# ============================================================================
# Properties
# ============================================================================


class TestConverterAgreement:
    """SQL and Python evaluation select the same rows."""

    @settings(max_examples=150, suppress_health_check=[HealthCheck.too_slow])
    @given(filter_=filter_trees)
    def test_sql_matches_evaluate(self, filter_: FilterNode) -> None:
        assert sql_ids(filter_) == python_ids(filter_)

    @settings(max_examples=50)
    @given(filter_=filter_trees)
    def test_group_wrapping_is_neutral(self, filter_: FilterNode) -> None:
        """Wrapping a tree in a single-child group does not change its meaning."""
        assert python_ids(GroupFilter(children=[filter_])) == python_ids(filter_)

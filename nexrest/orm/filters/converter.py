"""Filter converter.

Compiles the filter DSL to SQLAlchemy ``ColumnElement`` expressions and
evaluates it in Python. The Python evaluator is the reference semantics used by
the in-memory query builder: comparisons against a missing or NULL field are
false, as they are in SQL.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel
from sqlalchemy import ColumnElement, and_, false, or_, true
from sqlmodel import SQLModel

from .dsl import (
    ComparisonFilter,
    FilterNode,
    FilterOperator,
    GroupFilter,
    SearchTerm,
    or_runs,
)


def to_sqlalchemy(
    filter_: FilterNode,
    model_class: type[SQLModel],
) -> ColumnElement[bool]:
    """Convert a filter tree into a SQLAlchemy ColumnElement.

    Args:
        filter_: Filter DSL node
        model_class: SQLModel class providing the column definitions

    Returns:
        SQLAlchemy ColumnElement[bool] expression

    Raises:
        ValueError: If a field does not exist on ``model_class``

    Examples:
        >>> filter_ = GroupFilter.any_of(ComparisonFilter.eq("name", "alice"), ComparisonFilter.gt("age", 30))
        >>> expr = to_sqlalchemy(filter_, User)
        >>> # expr is equivalent to or_(User.name == "alice", User.age > 30)
    """
    if isinstance(filter_, ComparisonFilter):
        return _convert_comparison_filter(filter_, model_class)
    return _convert_group_filter(filter_, model_class)


def _get_column(
    model_class: type[SQLModel],
    field_name: str,
) -> ColumnElement[Any]:
    """Get the column named ``field_name`` from ``model_class``.

    Raises:
        ValueError: If the field does not exist on the model
    """
    table = model_class.__table__  # type: ignore[attr-defined]
    if field_name not in table.c:
        raise ValueError(f"Field '{field_name}' not found in model {model_class.__name__}")

    column: ColumnElement[Any] = table.c[field_name]
    return column


def _convert_comparison_filter(
    filter_: ComparisonFilter,
    model_class: type[SQLModel],
) -> ColumnElement[bool]:
    column = _get_column(model_class, filter_.field)
    op = filter_.op
    value = filter_.value

    if op == FilterOperator.EQ:
        return column == value
    elif op == FilterOperator.NE:
        return column != value
    elif op == FilterOperator.GT:
        return column > value
    elif op == FilterOperator.GTE:
        return column >= value
    elif op == FilterOperator.LT:
        return column < value
    elif op == FilterOperator.LTE:
        return column <= value
    elif op == FilterOperator.LIKE:
        return column.like(value)
    elif op == FilterOperator.IN:
        if not isinstance(value, list):
            raise ValueError(f"Invalid value type for operator {op}: expected list, got {type(value).__name__}")
        return column.in_(value)
    elif op == FilterOperator.NOT_IN:
        if not isinstance(value, list):
            raise ValueError(f"Invalid value type for operator {op}: expected list, got {type(value).__name__}")
        return column.not_in(value)
    elif op == FilterOperator.IS_NULL:
        return column.is_(None)
    elif op == FilterOperator.IS_NOT_NULL:
        return column.is_not(None)
    else:
        raise ValueError(f"Unsupported operator: {op}")


def _convert_group_filter(
    filter_: GroupFilter,
    model_class: type[SQLModel],
) -> ColumnElement[bool]:
    runs = or_runs(filter_.children)
    if not runs:
        # Empty group is the identity element for AND
        return true()

    clauses = [and_(*(to_sqlalchemy(child, model_class) for child in run)) for run in runs]
    if len(clauses) == 1:
        return clauses[0]
    return or_(*clauses)


def search_to_sqlalchemy(
    term: SearchTerm,
    model_class: type[SQLModel],
) -> ColumnElement[bool]:
    """Convert a search term into an OR of LIKE/ILIKE predicates."""
    if not term.fields:
        return false()

    pattern = term.pattern
    predicates = []
    for field_name in term.fields:
        column = _get_column(model_class, field_name)
        predicates.append(column.like(pattern) if term.case_sensitive else column.ilike(pattern))
    return or_(*predicates)


# ============================================================================
# Python evaluation
# ============================================================================


def _as_record(record: Mapping[str, Any] | BaseModel) -> Mapping[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump()
    return record


def evaluate(
    filter_: FilterNode,
    record: Mapping[str, Any] | BaseModel,
) -> bool:
    """Evaluate a filter tree against a record.

    Args:
        filter_: Filter DSL node
        record: Mapping or Pydantic/SQLModel instance

    Returns:
        Whether the record satisfies the filter

    Examples:
        >>> evaluate(ComparisonFilter.eq("name", "alice"), {"name": "alice", "age": 25})
        True
        >>> evaluate(ComparisonFilter.ne("role", "admin"), {"role": None})
        False
    """
    record_dict = _as_record(record)

    if isinstance(filter_, ComparisonFilter):
        return _evaluate_comparison_filter(filter_, record_dict)
    return _evaluate_group_filter(filter_, record_dict)


def _safe_compare(a: object, b: object, op: FilterOperator) -> bool:
    """Compare two values, returning False when they are not comparable."""
    try:
        if op == FilterOperator.GT:
            return a > b  # type: ignore[operator]
        elif op == FilterOperator.GTE:
            return a >= b  # type: ignore[operator]
        elif op == FilterOperator.LT:
            return a < b  # type: ignore[operator]
        elif op == FilterOperator.LTE:
            return a <= b  # type: ignore[operator]
        return False
    except TypeError:
        return False


def _convert_like_pattern_to_regex(pattern: str) -> str:
    """Convert a SQL LIKE pattern into an anchored regular expression.

    ``%`` matches any run of characters (including none), ``_`` matches exactly one.
    """
    result = []
    for char in pattern:
        if char == "%":
            result.append(".*")
        elif char == "_":
            result.append(".")
        else:
            result.append(re.escape(char))
    return "^" + "".join(result) + "$"


def like_matches(value: object, pattern: str, *, case_sensitive: bool = True) -> bool:
    """Python counterpart of ``LIKE`` (or ``ILIKE`` when not case sensitive)."""
    if value is None:
        return False
    text = value if isinstance(value, str) else str(value)
    flags = re.DOTALL if case_sensitive else re.DOTALL | re.IGNORECASE
    return re.match(_convert_like_pattern_to_regex(pattern), text, flags) is not None


def _evaluate_comparison_filter(
    filter_: ComparisonFilter,
    record: Mapping[str, Any],
) -> bool:
    field_value = record.get(filter_.field)
    op = filter_.op
    filter_value = filter_.value

    if op == FilterOperator.IS_NULL:
        return field_value is None
    if op == FilterOperator.IS_NOT_NULL:
        return field_value is not None

    if op in (FilterOperator.IN, FilterOperator.NOT_IN):
        if not isinstance(filter_value, list):
            raise ValueError(f"Invalid value type for operator {op}: expected list, got {type(filter_value).__name__}")
        # An empty list never matches IN and always matches NOT IN, NULL included
        if not filter_value:
            return op == FilterOperator.NOT_IN
        if field_value is None:
            return False
        contained = field_value in filter_value
        return contained if op == FilterOperator.IN else not contained

    # Any other comparison with NULL is unknown, which filters the row out
    if field_value is None:
        return False

    if op == FilterOperator.EQ:
        return field_value == filter_value
    elif op == FilterOperator.NE:
        return field_value != filter_value
    elif op in (FilterOperator.GT, FilterOperator.GTE, FilterOperator.LT, FilterOperator.LTE):
        return _safe_compare(field_value, filter_value, op)
    elif op == FilterOperator.LIKE:
        if not isinstance(filter_value, str):
            return False
        return like_matches(field_value, filter_value)
    else:
        raise ValueError(f"Unsupported operator: {op}")


def _evaluate_group_filter(
    filter_: GroupFilter,
    record: Mapping[str, Any],
) -> bool:
    runs = or_runs(filter_.children)
    if not runs:
        return True
    return any(all(evaluate(child, record) for child in run) for run in runs)


def evaluate_search(
    term: SearchTerm,
    record: Mapping[str, Any] | BaseModel,
) -> bool:
    """Evaluate a search term against a record."""
    record_dict = _as_record(record)
    return any(
        like_matches(record_dict.get(field_name), term.pattern, case_sensitive=term.case_sensitive)
        for field_name in term.fields
    )

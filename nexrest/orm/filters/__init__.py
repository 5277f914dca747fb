"""Filter DSL and converters."""

from .converter import evaluate, evaluate_search, like_matches, search_to_sqlalchemy, to_sqlalchemy
from .dsl import (
    LIST_OPERATORS,
    NULL_OPERATORS,
    Combinator,
    ComparisonFilter,
    FilterNode,
    FilterOperator,
    GroupFilter,
    Scalar,
    SearchTerm,
    filter_depth,
    filter_fields,
    or_runs,
)

__all__ = [
    "Combinator",
    "ComparisonFilter",
    "FilterNode",
    "FilterOperator",
    "GroupFilter",
    "LIST_OPERATORS",
    "NULL_OPERATORS",
    "Scalar",
    "SearchTerm",
    "evaluate",
    "evaluate_search",
    "filter_depth",
    "filter_fields",
    "like_matches",
    "or_runs",
    "search_to_sqlalchemy",
    "to_sqlalchemy",
]

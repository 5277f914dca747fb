"""Filter DSL models.

A request filter is a tree of ``ComparisonFilter`` leaves and ``GroupFilter``
nodes. Every node carries the combinator that joins it to the siblings before
it, mirroring how filter lists are written in request bodies:

    [{"field": "a", ...}, {"field": "b", "type": "or"}, {"type": "and", "nested": [...]}]

Sibling sequences follow SQL precedence: the sequence is cut at every ``or``
into runs of AND-ed nodes, and the runs are OR-ed together. Groups always keep
their own parentheses.
"""

from collections.abc import Sequence
from enum import Enum
from typing import Literal

from pydantic import BaseModel, model_validator

Scalar = str | int | float | bool


class FilterOperator(str, Enum):
    """Supported comparison operators."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    IN = "in"
    NOT_IN = "notIn"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"


LIST_OPERATORS = frozenset({FilterOperator.IN, FilterOperator.NOT_IN})
NULL_OPERATORS = frozenset({FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL})


class Combinator(str, Enum):
    """How a node joins the siblings that precede it."""

    AND = "and"
    OR = "or"


class FilterBase(BaseModel):
    """Filter DSL base class"""

    pass


class ComparisonFilter(FilterBase):
    """Single field comparison (a leaf of the filter tree)."""

    type: Literal["leaf"] = "leaf"
    field: str
    op: FilterOperator
    value: Scalar | list[Scalar] | None = None
    combinator: Combinator = Combinator.AND

    @model_validator(mode="after")
    def _check_value_shape(self) -> "ComparisonFilter":
        if self.op in LIST_OPERATORS:
            if not isinstance(self.value, list):
                raise ValueError(f"Operator '{self.op.value}' requires a list value")
        elif self.op in NULL_OPERATORS:
            if self.value is not None:
                raise ValueError(f"Operator '{self.op.value}' does not take a value")
        elif self.value is None or isinstance(self.value, list):
            raise ValueError(f"Operator '{self.op.value}' requires a scalar value")
        return self

    @classmethod
    def eq(cls, field: str, value: Scalar) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.EQ, value=value)

    @classmethod
    def ne(cls, field: str, value: Scalar) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.NE, value=value)

    @classmethod
    def gt(cls, field: str, value: Scalar) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.GT, value=value)

    @classmethod
    def gte(cls, field: str, value: Scalar) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.GTE, value=value)

    @classmethod
    def lt(cls, field: str, value: Scalar) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.LT, value=value)

    @classmethod
    def lte(cls, field: str, value: Scalar) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.LTE, value=value)

    @classmethod
    def like(cls, field: str, value: str) -> "ComparisonFilter":
        """Pattern match, ``%`` and ``_`` wildcards."""
        return cls(field=field, op=FilterOperator.LIKE, value=value)

    @classmethod
    def in_(cls, field: str, value: list[Scalar]) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.IN, value=list(value))

    @classmethod
    def not_in(cls, field: str, value: list[Scalar]) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.NOT_IN, value=list(value))

    @classmethod
    def is_null(cls, field: str) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.IS_NULL)

    @classmethod
    def is_not_null(cls, field: str) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.IS_NOT_NULL)

    def or_(self) -> "ComparisonFilter":
        """Copy of this leaf joined to its preceding siblings with OR."""
        return self.model_copy(update={"combinator": Combinator.OR})


class GroupFilter(FilterBase):
    """Parenthesized sequence of filter nodes."""

    type: Literal["group"] = "group"
    combinator: Combinator = Combinator.AND
    children: Sequence["ComparisonFilter | GroupFilter"]

    @classmethod
    def all_of(cls, *children: "ComparisonFilter | GroupFilter") -> "GroupFilter":
        """Group whose children are all AND-ed."""
        return cls(children=[_with_combinator(child, Combinator.AND) for child in children])

    @classmethod
    def any_of(cls, *children: "ComparisonFilter | GroupFilter") -> "GroupFilter":
        """Group whose children are all OR-ed."""
        return cls(children=[_with_combinator(child, Combinator.OR) for child in children])

    def or_(self) -> "GroupFilter":
        return self.model_copy(update={"combinator": Combinator.OR})


# Unified filter node alias
FilterNode = ComparisonFilter | GroupFilter

GroupFilter.model_rebuild()


def _with_combinator(node: FilterNode, combinator: Combinator) -> FilterNode:
    if node.combinator == combinator:
        return node
    return node.model_copy(update={"combinator": combinator})


def or_runs(children: Sequence[FilterNode]) -> list[list[FilterNode]]:
    """Split a sibling sequence into AND-runs separated by OR combinators.

    The first child's combinator is ignored.

    Examples:
        >>> a, b, c = ComparisonFilter.eq("a", 1), ComparisonFilter.eq("b", 2).or_(), ComparisonFilter.eq("c", 3)
        >>> [[n.field for n in run] for run in or_runs([a, b, c])]
        [['a'], ['b', 'c']]
    """
    runs: list[list[FilterNode]] = []
    for index, child in enumerate(children):
        if index == 0 or child.combinator == Combinator.OR:
            runs.append([child])
        else:
            runs[-1].append(child)
    return runs


def filter_depth(node: FilterNode) -> int:
    """Number of nested groups below ``node`` (a leaf has depth 0)."""
    if isinstance(node, ComparisonFilter):
        return 0
    return 1 + max((filter_depth(child) for child in node.children), default=0)


def filter_fields(node: FilterNode) -> set[str]:
    """All field names referenced by the tree."""
    if isinstance(node, ComparisonFilter):
        return {node.field}
    fields: set[str] = set()
    for child in node.children:
        fields |= filter_fields(child)
    return fields


class SearchTerm(FilterBase):
    """A single text term matched against several fields with OR semantics."""

    value: str
    fields: tuple[str, ...]
    case_sensitive: bool = True

    @property
    def pattern(self) -> str:
        return f"%{self.value}%"

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

"""Request parameter parsing.

Turns raw request parameters into filter trees, search terms, sort
directives and pagination requests for one resource. Filters are written as
a list of entries:

    [
        {"field": "status", "operator": "=", "value": "draft"},
        {"type": "or", "nested": [
            {"field": "views", "operator": ">", "value": 10},
            {"field": "title", "operator": "like", "value": "%news%"},
        ]},
    ]

Every entry may carry ``type`` (``and``/``or``), which joins it to the
entries before it.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from ..config import RestConfig
from ..errors import (
    FieldNotAllowedError,
    MalformedFilterError,
    MalformedRequestError,
    NestingLimitExceededError,
    RelationNotAllowedError,
    UnsupportedOperatorError,
)
from ..orm.descriptor import ModelDescriptor
from ..orm.filters import Combinator, ComparisonFilter, FilterNode, FilterOperator, GroupFilter, SearchTerm
from ..orm.query import AggregateRequest, PaginationRequest, SortDirection, SortDirective, TrashedScope
from .request import coerce_bool, coerce_int

logger = logging.getLogger(__name__)

OPERATOR_ALIASES: dict[str, FilterOperator] = {
    "=": FilterOperator.EQ,
    "==": FilterOperator.EQ,
    "!=": FilterOperator.NE,
    "<>": FilterOperator.NE,
    ">": FilterOperator.GT,
    ">=": FilterOperator.GTE,
    "<": FilterOperator.LT,
    "<=": FilterOperator.LTE,
    "not in": FilterOperator.NOT_IN,
    "notin": FilterOperator.NOT_IN,
    "not_in": FilterOperator.NOT_IN,
    "isnull": FilterOperator.IS_NULL,
    "is_null": FilterOperator.IS_NULL,
    "isnotnull": FilterOperator.IS_NOT_NULL,
    "is_not_null": FilterOperator.IS_NOT_NULL,
}


def resolve_operator(raw: object) -> FilterOperator:
    """Map a canonical operator name or alias to a ``FilterOperator``.

    Raises:
        UnsupportedOperatorError: If the operator is not recognized
    """
    if not isinstance(raw, str):
        raise UnsupportedOperatorError(raw)
    try:
        return FilterOperator(raw)
    except ValueError:
        pass
    lowered = raw.strip().lower()
    if lowered in OPERATOR_ALIASES:
        return OPERATOR_ALIASES[lowered]
    for operator in FilterOperator:
        if operator.value.lower() == lowered:
            return operator
    raise UnsupportedOperatorError(raw)


def split_list(raw: Any, name: str) -> list[str]:
    """Accept ``"a,b"`` or ``["a", "b"]``."""
    if raw is None:
        return []
    if isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(raw, Sequence) and all(isinstance(item, str) for item in raw):
        return [item.strip() for item in raw if item.strip()]
    raise MalformedRequestError(f"Parameter '{name}' must be a comma separated string or a list of strings")


def _decode_json_list(raw: Any, name: str, error: type[Exception] = MalformedRequestError) -> Any:
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise error(f"Parameter '{name}' is not valid JSON: {e}") from e
    return raw


class FilterParser:
    """Parses request parameters against one resource's allow-lists.

    Example:
        >>> parser = FilterParser(posts, RestConfig())
        >>> parser.parse({"filters": [{"field": "status", "operator": "=", "value": "draft"}]})
        GroupFilter(type='group', combinator=<Combinator.AND: 'and'>, children=[...])
    """

    def __init__(self, descriptor: ModelDescriptor, config: RestConfig) -> None:
        self.descriptor = descriptor
        self.config = config

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def parse(self, params: Mapping[str, Any]) -> FilterNode | None:
        """Parse the ``filters`` parameter into a filter tree.

        Returns:
            A group holding the top-level entries, or None if no filters were given

        Raises:
            MalformedFilterError: If an entry has the wrong shape
            UnsupportedOperatorError: If an entry uses an unknown operator
            NestingLimitExceededError: If groups nest deeper than ``max_nested_depth``
            FieldNotAllowedError: If a field is not filterable
        """
        return self.parse_filters(params.get("filters"))

    def parse_filters(self, raw: Any) -> FilterNode | None:
        """Parse a filter entry list (or its JSON encoding)."""
        entries = _decode_json_list(raw, "filters", MalformedFilterError)
        if entries is None or entries == []:
            return None
        if not isinstance(entries, list):
            raise MalformedFilterError("Filters must be a list of filter entries")
        return GroupFilter(children=self._parse_entries(entries, depth=0))

    def _parse_entries(self, entries: list[Any], depth: int) -> list[FilterNode]:
        if depth > self.config.max_nested_depth:
            logger.debug("Rejected filters on '%s': depth %d", self.descriptor.name, depth)
            raise NestingLimitExceededError(depth, self.config.max_nested_depth)
        return [self._parse_entry(entry, depth) for entry in entries]

    def _parse_entry(self, entry: Any, depth: int) -> FilterNode:
        if not isinstance(entry, Mapping):
            raise MalformedFilterError(f"Filter entry must be an object, got {entry!r}")

        raw_type = entry.get("type", Combinator.AND.value)
        try:
            combinator = Combinator(str(raw_type).lower())
        except ValueError:
            raise MalformedFilterError(f"Filter type must be 'and' or 'or', got {raw_type!r}") from None

        if "nested" in entry:
            nested = entry["nested"]
            if not isinstance(nested, list) or not nested:
                raise MalformedFilterError("'nested' must be a non-empty list of filter entries")
            return GroupFilter(combinator=combinator, children=self._parse_entries(nested, depth + 1))

        field = entry.get("field")
        if not isinstance(field, str) or not field:
            raise MalformedFilterError(f"Filter entry is missing a field: {dict(entry)!r}")
        if field not in self.descriptor.filterable:
            logger.debug("Rejected filter field '%s' on '%s'", field, self.descriptor.name)
            raise FieldNotAllowedError(field, self.descriptor.name, "filterable")

        operator = resolve_operator(entry.get("operator", "="))
        value = entry.get("value")
        # ``= null`` and ``!= null`` mean IS NULL and IS NOT NULL
        if value is None and operator == FilterOperator.EQ:
            operator = FilterOperator.IS_NULL
        elif value is None and operator == FilterOperator.NE:
            operator = FilterOperator.IS_NOT_NULL

        try:
            return ComparisonFilter(field=field, op=operator, value=value, combinator=combinator)
        except ValidationError as e:
            raise MalformedFilterError(f"Invalid filter on '{field}': {e.errors()[0]['msg']}") from e

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def parse_search(self, params: Mapping[str, Any]) -> SearchTerm | None:
        """Parse ``search`` (a string or ``{"value": ..., "case_sensitive": ...}``)."""
        raw = params.get("search")
        if raw is None:
            return None

        case_sensitive = self.config.search.case_sensitive
        if isinstance(raw, Mapping):
            value = raw.get("value")
            if "case_sensitive" in raw:
                case_sensitive = coerce_bool(raw["case_sensitive"], "search.case_sensitive")
        else:
            value = raw

        if value is None or value == "":
            return None
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise MalformedRequestError(f"Search value must be a string, got {value!r}")
        if not self.descriptor.searchable:
            raise MalformedRequestError(f"Resource '{self.descriptor.name}' is not searchable")

        return SearchTerm(value=str(value), fields=self.descriptor.searchable, case_sensitive=case_sensitive)

    # ------------------------------------------------------------------
    # Sort
    # ------------------------------------------------------------------

    def parse_sort(self, params: Mapping[str, Any]) -> tuple[SortDirective, ...]:
        """Parse ``sort``: ``"name,-created_at"`` or ``[{"field": ..., "direction": ...}]``."""
        return self.parse_sort_value(params.get("sort"))

    def parse_sort_value(self, raw: Any) -> tuple[SortDirective, ...]:
        if raw is None or raw == "" or raw == []:
            return ()
        if isinstance(raw, str) and raw.lstrip().startswith("["):
            raw = _decode_json_list(raw, "sort")

        directives: list[SortDirective] = []
        if isinstance(raw, str):
            for part in split_list(raw, "sort"):
                descending = part.startswith("-")
                directives.append(self._directive(part.lstrip("-"), "desc" if descending else "asc"))
        elif isinstance(raw, list):
            for entry in raw:
                if not isinstance(entry, Mapping) or not isinstance(entry.get("field"), str):
                    raise MalformedRequestError(f"Sort entry must be an object with a field, got {entry!r}")
                directives.append(self._directive(entry["field"], entry.get("direction", "asc")))
        else:
            raise MalformedRequestError("Parameter 'sort' must be a string or a list of sort entries")
        return tuple(directives)

    def _directive(self, field: str, direction: Any) -> SortDirective:
        try:
            parsed = SortDirection(str(direction).lower())
        except ValueError:
            raise MalformedRequestError(f"Sort direction must be 'asc' or 'desc', got {direction!r}") from None

        aggregate_aliases = {AggregateRequest(name).alias for name in self.descriptor.aggregates}
        if field not in self.descriptor.sortable and field not in aggregate_aliases:
            logger.debug("Rejected sort field '%s' on '%s'", field, self.descriptor.name)
            raise FieldNotAllowedError(field, self.descriptor.name, "sortable")
        return SortDirective(field=field, direction=parsed)

    # ------------------------------------------------------------------
    # Pagination, projection, aggregates
    # ------------------------------------------------------------------

    def parse_pagination(self, params: Mapping[str, Any]) -> PaginationRequest:
        """Resolve ``page`` and ``limit`` against the pagination config.

        ``limit=0`` (or a globally disabled paginator) requests the whole
        result set as a single collection.
        """
        pagination = self.config.pagination
        page = coerce_int(params.get("page", 1), "page", minimum=1)
        limit = coerce_int(params.get("limit", pagination.default_limit), "limit", minimum=0)

        if pagination.disabled or limit == 0:
            return PaginationRequest(page=1, limit=0, disabled=True)
        if pagination.max_limit is not None:
            limit = min(limit, pagination.max_limit)
        return PaginationRequest(page=page, limit=limit)

    def parse_fields(self, params: Mapping[str, Any]) -> tuple[str, ...] | None:
        """Parse the ``fields`` sparse projection; None selects every column."""
        fields = split_list(params.get("fields"), "fields")
        if not fields:
            return None
        columns = set(self.descriptor.columns)
        for field in fields:
            if field not in columns:
                raise FieldNotAllowedError(field, self.descriptor.name, "selectable")
        return tuple(fields)

    def parse_aggregates(self, params: Mapping[str, Any]) -> tuple[AggregateRequest, ...]:
        """Parse ``with_count`` into relation count aggregates."""
        aggregates = []
        for relation in split_list(params.get("with_count"), "with_count"):
            if relation not in self.descriptor.aggregates:
                raise RelationNotAllowedError(relation, self.descriptor.name)
            aggregates.append(AggregateRequest(relation))
        return tuple(dict.fromkeys(aggregates))

    def parse_trashed(self, params: Mapping[str, Any]) -> TrashedScope:
        """Soft-delete scope from ``with_trashed``/``only_trashed``; ``only_trashed`` wins."""
        if not self.descriptor.soft_deletes:
            return TrashedScope.EXCLUDE
        if coerce_bool(params.get("only_trashed", False), "only_trashed"):
            return TrashedScope.ONLY
        if coerce_bool(params.get("with_trashed", False), "with_trashed"):
            return TrashedScope.INCLUDE
        return TrashedScope.EXCLUDE

    def parse_query(self, params: Mapping[str, Any]) -> ParsedQuery:
        """Parse every query-shaping parameter at once."""
        return ParsedQuery(
            filters=self.parse(params),
            search=self.parse_search(params),
            sorts=self.parse_sort(params),
            pagination=self.parse_pagination(params),
            columns=self.parse_fields(params),
            aggregates=self.parse_aggregates(params),
            trashed=self.parse_trashed(params),
        )


@dataclass(frozen=True)
class ParsedQuery:
    """Everything the parser extracted from one request."""

    filters: FilterNode | None = None
    search: SearchTerm | None = None
    sorts: tuple[SortDirective, ...] = ()
    pagination: PaginationRequest = PaginationRequest()
    columns: tuple[str, ...] | None = None
    aggregates: tuple[AggregateRequest, ...] = ()
    trashed: TrashedScope = TrashedScope.EXCLUDE

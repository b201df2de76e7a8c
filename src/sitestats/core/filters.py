"""Utilities for translating request filters into parameterised SQL predicates."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any, Dict, List, Optional

import structlog

from ._columns import PAGE_PATH_COLUMN, FilterColumn, is_column_supported, parse_filter_column
from .errors import InvalidFilterShape, UnsupportedFilter
from .query_helpers import join_where_clauses, join_where_clauses_or
from .sql import param
from .types import CompiledFilter, DataType, FilterClause, ParamValue, RawFilter

logger = structlog.get_logger(__name__)


def parse_filters(filters: Optional[str]) -> list:
    """Decode the filters JSON, returning ``[]`` for empty or unparsable input."""

    if not filters or filters == '""':
        return []

    try:
        parsed = json.loads(filters)
    except ValueError:
        logger.warning("filters_unparsable", filters=filters)
        return []

    if not parsed:
        return []

    if not isinstance(parsed, list):
        raise InvalidFilterShape()

    for entry in parsed:
        if not isinstance(entry, dict) or not isinstance(entry.get("column"), str):
            raise InvalidFilterShape()

    return parsed


def _as_value(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def post_process_parsed_filters(parsed: Sequence[RawFilter]) -> List[FilterClause]:
    """Flatten filters so that every array valued entry becomes one clause per element."""

    clauses: List[FilterClause] = []
    for entry in parsed:
        column = entry["column"]
        is_exclusive = bool(entry.get("isExclusive", False))
        is_contains = bool(entry.get("isContains", False))
        value = entry.get("filter")
        values = value if isinstance(value, list) else [value]
        for item in values:
            clauses.append(FilterClause(column, _as_value(item), is_exclusive, is_contains))
    return clauses


def _is_null_filter(value: Optional[str]) -> bool:
    return value is None or value.lower() == "null"


def _session_page_predicate(
    column: FilterColumn,
    clause: FilterClause,
    value_param: str,
    analytics_table: str,
) -> str:
    direction = "ASC" if column.name == "entryPage" else "DESC"
    if _is_null_filter(clause.value):
        condition = "page IS NULL"
    elif clause.is_contains:
        condition = f"CONTAINS_SUBSTR(page, {param(value_param)})"
    else:
        condition = f"page = {param(value_param)}"

    pages = (
        f"SELECT psid, ARRAY_AGG(pg ORDER BY created {direction} LIMIT 1)[OFFSET(0)] AS page "
        f"FROM {analytics_table} WHERE pid = @pid AND psid IS NOT NULL GROUP BY psid"
    )
    operator = "NOT IN" if clause.is_exclusive else "IN"
    return f"psid {operator} (SELECT psid FROM ({pages}) WHERE {condition})"


def _meta_lookup_predicate(clause: FilterClause, key_param: str, value_param: str) -> str:
    stored_value = "meta_value[SAFE_OFFSET(i)]"
    if clause.is_contains:
        negate = "NOT " if clause.is_exclusive else ""
        comparison = f"{negate}CONTAINS_SUBSTR({stored_value}, {param(value_param)})"
    else:
        operator = "!=" if clause.is_exclusive else "="
        comparison = f"{stored_value} {operator} {param(value_param)}"
    return (
        "EXISTS (SELECT 1 FROM UNNEST(meta_key) AS k WITH OFFSET AS i "
        f"WHERE k = {param(key_param)} AND {comparison})"
    )


def _array_predicate(column: FilterColumn, clause: FilterClause, value_param: str) -> str:
    negate = "NOT " if clause.is_exclusive else ""
    if clause.is_contains:
        return (
            f"{negate}EXISTS (SELECT 1 FROM UNNEST({column.sql_column}) AS v "
            f"WHERE CONTAINS_SUBSTR(v, {param(value_param)}))"
        )
    return f"{param(value_param)} {negate}IN UNNEST({column.sql_column})"


def _plain_predicate(column: FilterColumn, clause: FilterClause, value_param: str) -> str:
    sql_column = column.sql_column
    if _is_null_filter(clause.value):
        return f"{sql_column} IS {'NOT ' if clause.is_exclusive else ''}NULL"
    negate = "NOT " if clause.is_exclusive else ""
    if clause.is_contains:
        return f"{negate}CONTAINS_SUBSTR({sql_column}, {param(value_param)})"
    return f"{negate}{sql_column} = {param(value_param)}"


def compile_filters(
    filters: Optional[str],
    data_type: DataType,
    ignore_event_filter: bool = False,
    *,
    analytics_table: str = "analytics",
) -> CompiledFilter:
    """Compile the filters JSON into a predicate and its bound parameters.

    Clauses on the same column are OR-ed inside one parenthesised group and
    groups for distinct columns are AND-ed.  Parameter names follow
    ``qf_<group>_<clause>`` (``qfk_`` for metadata keys) so that sibling
    queries compiled from the same request bind identical names.
    """

    parsed = parse_filters(filters)
    if not parsed:
        return CompiledFilter()

    grouped: Dict[str, List[FilterClause]] = {}
    columns: Dict[str, FilterColumn] = {}
    custom_event_filter_applied = False

    for clause in post_process_parsed_filters(parsed):
        if clause.column == "ev" and ignore_event_filter:
            continue

        column = parse_filter_column(clause.column)
        if column.is_custom_event:
            custom_event_filter_applied = True
        elif not is_column_supported(column, data_type):
            raise UnsupportedFilter(clause.column, data_type)

        columns[clause.column] = column
        grouped.setdefault(clause.column, []).append(clause)

    parameters: Dict[str, ParamValue] = {}
    groups: List[str] = []

    for col, (name, clauses) in enumerate(grouped.items()):
        column = columns[name]
        alternatives: List[str] = []

        for f, clause in enumerate(clauses):
            value_param = f"qf_{col}_{f}"

            if column.kind == "session_page":
                alternatives.append(_session_page_predicate(column, clause, value_param, analytics_table))
                if not _is_null_filter(clause.value):
                    parameters[value_param] = clause.value
                continue

            # Arrays have no null membership, so null clauses are dropped for them.
            if (column.is_array or column.kind == "meta_lookup") and _is_null_filter(clause.value):
                continue

            if column.kind == "meta_lookup":
                key_param = f"qfk_{col}_{f}"
                parameters[key_param] = column.meta_key
                alternatives.append(_meta_lookup_predicate(clause, key_param, value_param))
            elif column.is_array:
                alternatives.append(_array_predicate(column, clause, value_param))
            else:
                alternatives.append(_plain_predicate(column, clause, value_param))
                if _is_null_filter(clause.value):
                    continue
            parameters[value_param] = clause.value

        if alternatives:
            groups.append(join_where_clauses_or(alternatives))

    clauses = tuple(clause for name in grouped for clause in grouped[name])
    page_inclusive = data_type != "performance" and any(
        clause.column == PAGE_PATH_COLUMN and not clause.is_exclusive for clause in clauses
    )

    return CompiledFilter(
        predicate_text=join_where_clauses(groups),
        parameters=parameters,
        normalized_clauses=clauses,
        custom_event_filter_applied=custom_event_filter_applied,
        page_inclusive=page_inclusive,
    )


__all__ = ["compile_filters", "parse_filters", "post_process_parsed_filters"]

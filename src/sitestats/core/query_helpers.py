"""Shared helper utilities for query construction."""

from __future__ import annotations

from collections.abc import Sequence

import pandas as pd

from .sql import timestamp_param


def join_where_clauses(clauses: Sequence[str], *, operator: str = "AND") -> str:
    """Join ``clauses`` with ``operator`` while wrapping each clause in parentheses."""

    joined = f" {operator} ".join(f"({clause})" for clause in clauses)
    return joined


def join_where_clauses_or(clauses: Sequence[str]) -> str:
    return join_where_clauses(clauses, operator="OR")


def time_window_condition(
    column: str = "created",
    from_param: str = "groupFrom",
    to_param: str = "groupTo",
) -> str:
    return f"{column} BETWEEN {timestamp_param(from_param)} AND {timestamp_param(to_param)}"


def base_where(filter_suffix: str = "", *, column: str = "created") -> str:
    """Return the project and time window predicate shared by every aggregation."""

    return f"pid = @pid AND {time_window_condition(column)}{filter_suffix}"


def to_records(df: pd.DataFrame) -> list[dict]:
    """Return ``df`` as plain row dictionaries with pandas missing values as ``None``."""

    if df.empty:
        return []
    return df.astype(object).where(df.notna(), None).to_dict(orient="records")


__all__ = [
    "base_where",
    "join_where_clauses",
    "join_where_clauses_or",
    "time_window_condition",
    "to_records",
]

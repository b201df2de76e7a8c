"""Helper utilities for constructing SQL fragments and binding parameters.

User supplied values never reach the query text: they are bound through
named BigQuery parameters, and only identifiers picked from internal
allow-lists (table names, column names) are spliced into the SQL.  Keeping
that translation in one place makes the generated SQL deterministic, which
the snapshot style tests in the repository rely on.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from google.cloud import bigquery

from .types import ParamValue

_IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_DATASET_PATTERN = re.compile(r"[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)?")


def identifier(name: str) -> str:
    """Return ``name`` unchanged after checking it is a plain column identifier."""

    if _IDENTIFIER_PATTERN.fullmatch(name) is None:
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def table_ref(dataset_id: str, table: str) -> str:
    """Return the backtick quoted, fully qualified reference for ``table``."""

    if _DATASET_PATTERN.fullmatch(dataset_id) is None:
        raise ValueError(f"Invalid dataset id: {dataset_id!r}")
    return f"`{dataset_id}.{identifier(table)}`"


def param(name: str) -> str:
    return f"@{identifier(name)}"


def timestamp_param(name: str) -> str:
    """Return the SQL parsing the ``YYYY-MM-DD HH:MM:SS`` UTC string bound to ``name``."""

    return f"TIMESTAMP({param(name)})"


def _scalar_type(value: ParamValue) -> str:
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return "BOOL"
    if isinstance(value, int):
        return "INT64"
    if isinstance(value, float):
        return "FLOAT64"
    return "STRING"


def to_query_parameter(name: str, value: ParamValue):
    if isinstance(value, (list, tuple)):
        return bigquery.ArrayQueryParameter(name, "STRING", [str(v) for v in value])
    if value is not None and not isinstance(value, (str, int, float, bool)):
        raise TypeError(f"Unsupported parameter type for {name!r}: {type(value).__name__}")
    return bigquery.ScalarQueryParameter(name, _scalar_type(value), value)


def to_query_parameters(params: Mapping[str, ParamValue]) -> list:
    """Return BigQuery parameter objects for ``params`` in a stable order."""

    return [to_query_parameter(name, params[name]) for name in sorted(params)]


__all__ = [
    "identifier",
    "param",
    "table_ref",
    "timestamp_param",
    "to_query_parameter",
    "to_query_parameters",
]

"""Internal helpers describing filterable columns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .types import DataType

TRAFFIC_COLUMNS = (
    "cc", "rg", "ct", "host", "pg", "lc", "br", "brv", "os", "osv", "dv",
    "ref", "so", "me", "ca", "te", "co",
)
PERFORMANCE_COLUMNS = ("cc", "rg", "ct", "host", "pg", "dv", "br", "brv")
ERROR_COLUMNS = ("pg", "dv", "br", "brv", "os", "osv", "lc", "cc", "rg", "ct")

SESSION_PAGE_COLUMNS = frozenset({"entryPage", "exitPage"})

# Breakdown rows for these columns carry extra context so the client can
# render e.g. a country flag next to a city.
EXTRA_FIELDS = {
    "rg": ("cc", "rgc"),
    "ct": ("cc",),
    "brv": ("br",),
    "osv": ("os",),
}

PAGE_PATH_COLUMN = "pg"

ColumnKind = Literal["plain", "event_name", "meta_lookup", "meta_key", "meta_value", "session_page"]


@dataclass(frozen=True)
class FilterColumn:
    """Parsed representation of a filter column name.

    Metadata filters come in three flavours: ``ev:key``/``tag:key`` test whether
    a key is present, ``ev:value``/``tag:value`` test whether a value is
    present and ``ev:key:<k>``/``tag:key:<k>`` compare the value stored under
    the key ``<k>``.
    """

    name: str
    kind: ColumnKind
    meta_key: str | None = None

    @property
    def is_custom_event(self) -> bool:
        return self.name == "ev" or self.name.startswith("ev:key")

    @property
    def is_array(self) -> bool:
        return self.kind in {"meta_key", "meta_value"}

    @property
    def sql_column(self) -> str:
        if self.kind == "meta_key":
            return "meta_key"
        if self.kind == "meta_value":
            return "meta_value"
        return self.name


_LOOKUP_PREFIXES = ("ev:key:", "tag:key:")


def parse_filter_column(column: str) -> FilterColumn:
    """Return the :class:`FilterColumn` describing ``column``."""

    for prefix in _LOOKUP_PREFIXES:
        if column.startswith(prefix):
            return FilterColumn(name=column, kind="meta_lookup", meta_key=column[len(prefix):])

    if column in {"ev:key", "tag:key"}:
        return FilterColumn(name=column, kind="meta_key")

    if column in {"ev:value", "tag:value"}:
        return FilterColumn(name=column, kind="meta_value")

    if column == "ev":
        return FilterColumn(name=column, kind="event_name")

    if column in SESSION_PAGE_COLUMNS:
        return FilterColumn(name=column, kind="session_page")

    return FilterColumn(name=column, kind="plain")


def data_type_columns(data_type: DataType) -> tuple[str, ...]:
    if data_type == "analytics":
        return TRAFFIC_COLUMNS
    if data_type == "performance":
        return PERFORMANCE_COLUMNS
    if data_type == "errors":
        return ERROR_COLUMNS
    raise ValueError(f"Unknown data type: {data_type}")


def is_column_supported(column: FilterColumn, data_type: DataType) -> bool:
    """Return ``True`` if ``column`` may be filtered on for ``data_type``."""

    if column.kind == "plain":
        return column.name in data_type_columns(data_type)
    if column.kind == "session_page":
        return data_type in {"analytics", "errors"}
    return True

"""SQL builders for time bucketed aggregations and dimension breakdowns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ._columns import EXTRA_FIELDS, PAGE_PATH_COLUMN
from .errors import InvalidMeasure
from .group_by import _parse_time_bucket, local_time_column
from .query_helpers import base_where
from .sql import identifier, table_ref
from .types import ChartRenderMode, CompiledFilter, DataType, PerfMeasure, TimeBucket

PERFORMANCE_TIMINGS = ("dns", "tls", "conn", "response", "render", "dom_load", "ttfb")
QUANTILE_POINTS = (50, 75, 95)

VISIBLE_ERROR_STATUSES = ("active", "regressed")


@dataclass(frozen=True)
class Tables:
    """Fully qualified references to the tables of one dataset."""

    dataset_id: str

    @property
    def analytics(self) -> str:
        return table_ref(self.dataset_id, "analytics")

    @property
    def custom_events(self) -> str:
        return table_ref(self.dataset_id, "customEV")

    @property
    def performance(self) -> str:
        return table_ref(self.dataset_id, "performance")

    @property
    def errors(self) -> str:
        return table_ref(self.dataset_id, "errors")

    @property
    def error_statuses(self) -> str:
        return table_ref(self.dataset_id, "error_statuses")

    @property
    def sessions(self) -> str:
        return table_ref(self.dataset_id, "sessions")

    def for_data_type(self, data_type: DataType, custom_event_filter_applied: bool = False) -> str:
        if data_type == "performance":
            return self.performance
        if data_type == "errors":
            return self.errors
        return self.custom_events if custom_event_filter_applied else self.analytics


def normalize_measure(measure: Optional[str], *, allow_quantiles: bool = False) -> PerfMeasure:
    """Validate ``measure``; ``quantiles`` collapses to ``median`` unless allowed."""

    measure = measure or "median"
    if measure == "quantiles":
        return "quantiles" if allow_quantiles else "median"
    if measure not in {"average", "median", "p75", "p95"}:
        raise InvalidMeasure(measure)
    return measure  # type: ignore[return-value]


def measure_expression(measure: PerfMeasure, column: str) -> str:
    column = identifier(column)
    if measure == "average":
        return f"AVG({column})"
    if measure == "median":
        return f"APPROX_QUANTILES({column}, 100)[OFFSET(50)]"
    if measure == "p75":
        return f"APPROX_QUANTILES({column}, 100)[OFFSET(75)]"
    if measure == "p95":
        return f"APPROX_QUANTILES({column}, 100)[OFFSET(95)]"
    raise InvalidMeasure(measure)


def quantiles_expression(column: str) -> str:
    column = identifier(column)
    points = ", ".join(f"APPROX_QUANTILES({column}, 100)[OFFSET({point})]" for point in QUANTILE_POINTS)
    return f"[{points}]"


def _bucketed_source(table: str, columns: Sequence[str], filter_: CompiledFilter) -> str:
    select_fields = [*columns, local_time_column()]
    return "\n".join(
        [
            f"  SELECT {', '.join(select_fields)}",
            f"  FROM {table}",
            f"  WHERE {base_where(filter_.sql_suffix)}",
        ]
    )


def _bucketed_query(
    time_bucket: TimeBucket,
    table: str,
    filter_: CompiledFilter,
    metrics: Sequence[str],
    *,
    source_columns: Sequence[str] = ("psid",),
    extra_group_by: Sequence[str] = (),
) -> str:
    selector, group_by = _parse_time_bucket(time_bucket)
    group_by = ", ".join([group_by, *extra_group_by])
    select_fields = [selector, *extra_group_by, *metrics]
    return "\n".join(
        [
            "WITH events AS (",
            _bucketed_source(table, source_columns, filter_),
            ")",
            f"SELECT {', '.join(select_fields)}",
            "FROM events",
            f"GROUP BY {group_by}",
            f"ORDER BY {group_by}",
        ]
    )


def cumulative_query(base_query: str, time_bucket: TimeBucket, columns: Sequence[str]) -> str:
    """Wrap ``base_query`` so that ``columns`` become running totals over the buckets."""

    _, group_by = _parse_time_bucket(time_bucket)
    window = f"OVER (ORDER BY {group_by} ROWS BETWEEN UNBOUNDED PRECEDING AND CURRENT ROW)"
    replacements = ", ".join(f"SUM({column}) {window} AS {column}" for column in columns)
    return "\n".join(
        [
            f"SELECT * REPLACE ({replacements})",
            f"FROM ({base_query})",
            f"ORDER BY {group_by}",
        ]
    )


def traffic_chart_query(
    tables: Tables,
    time_bucket: TimeBucket,
    filter_: CompiledFilter,
    mode: ChartRenderMode = "periodical",
) -> str:
    """Pageviews, uniques and average session duration per bucket."""

    selector, group_by = _parse_time_bucket(time_bucket)
    base = "\n".join(
        [
            "WITH events AS (",
            _bucketed_source(tables.analytics, ("psid", "`unique`"), filter_),
            "),",
            "durations AS (",
            "  SELECT psid, TIMESTAMP_DIFF(MAX(last_seen), MIN(first_seen), SECOND) AS duration",
            f"  FROM {tables.sessions}",
            "  WHERE pid = @pid",
            "  GROUP BY psid",
            ")",
            "SELECT",
            f"  {selector},",
            "  AVG(durations.duration) AS sdur,",
            "  COUNT(*) AS pageviews,",
            "  SUM(events.`unique`) AS uniques",
            "FROM events",
            "LEFT JOIN durations ON events.psid = durations.psid",
            f"GROUP BY {group_by}",
            f"ORDER BY {group_by}",
        ]
    )

    if mode == "cumulative":
        return cumulative_query(base, time_bucket, ("pageviews", "uniques"))
    return base


def custom_events_chart_query(
    tables: Tables,
    time_bucket: TimeBucket,
    filter_: CompiledFilter,
    mode: ChartRenderMode = "periodical",
    *,
    by_event_name: bool = True,
) -> str:
    """Custom event counts per bucket, optionally split by event name."""

    extra_group_by = ("ev",) if by_event_name else ()
    base = _bucketed_query(
        time_bucket,
        tables.custom_events,
        filter_,
        ["COUNT(*) AS count"],
        source_columns=("ev",),
        extra_group_by=extra_group_by,
    )
    if mode != "cumulative":
        return base

    _, group_by = _parse_time_bucket(time_bucket)
    partition = "PARTITION BY ev " if by_event_name else ""
    window = f"OVER ({partition}ORDER BY {group_by} ROWS BETWEEN UNBOUNDED PRECEDING AND CURRENT ROW)"
    return "\n".join(
        [
            f"SELECT * REPLACE (SUM(count) {window} AS count)",
            f"FROM ({base})",
            f"ORDER BY {group_by}",
        ]
    )


def session_counts_query(table: str, time_bucket: TimeBucket, alias: str) -> str:
    """Row count per bucket for the single session bound to ``@psid``."""

    selector, group_by = _parse_time_bucket(time_bucket)
    return "\n".join(
        [
            "WITH events AS (",
            f"  SELECT {local_time_column()}",
            f"  FROM {table}",
            f"  WHERE {base_where(' AND psid = @psid')}",
            ")",
            f"SELECT {selector}, COUNT(*) AS {identifier(alias)}",
            "FROM events",
            f"GROUP BY {group_by}",
            f"ORDER BY {group_by}",
        ]
    )


def performance_chart_query(
    tables: Tables,
    time_bucket: TimeBucket,
    filter_: CompiledFilter,
    measure: PerfMeasure,
) -> str:
    if measure == "quantiles":
        metrics = [f"{quantiles_expression(column)} AS {column}" for column in PERFORMANCE_TIMINGS]
    else:
        metrics = [f"{measure_expression(measure, column)} AS {column}" for column in PERFORMANCE_TIMINGS]
    return _bucketed_query(
        time_bucket,
        tables.performance,
        filter_,
        metrics,
        source_columns=PERFORMANCE_TIMINGS,
    )


def _latest_status_cte(tables: Tables) -> str:
    return "\n".join(
        [
            "latest_status AS (",
            "  SELECT eid, ARRAY_AGG(status ORDER BY updated DESC LIMIT 1)[OFFSET(0)] AS status",
            f"  FROM {tables.error_statuses}",
            "  WHERE pid = @pid",
            "  GROUP BY eid",
            ")",
        ]
    )


def _visible_status_condition() -> str:
    statuses = ", ".join(f"'{status}'" for status in VISIBLE_ERROR_STATUSES)
    return f"COALESCE(latest_status.status, 'active') IN ({statuses})"


def errors_chart_query(
    tables: Tables,
    time_bucket: TimeBucket,
    filter_: CompiledFilter,
    mode: ChartRenderMode = "periodical",
    *,
    show_resolved: bool = True,
) -> str:
    """Error occurrences and affected sessions per bucket."""

    selector, group_by = _parse_time_bucket(time_bucket)
    lines = [
        "WITH events AS (",
        _bucketed_source(tables.errors, ("eid", "psid"), filter_),
        "),",
        _latest_status_cte(tables),
        "SELECT",
        f"  {selector},",
        "  COUNT(*) AS count,",
        "  COUNT(DISTINCT events.psid) AS users",
        "FROM events",
        "LEFT JOIN latest_status ON events.eid = latest_status.eid",
    ]
    if not show_resolved:
        lines.append(f"WHERE {_visible_status_condition()}")
    lines.extend([f"GROUP BY {group_by}", f"ORDER BY {group_by}"])
    base = "\n".join(lines)

    if mode == "cumulative":
        return cumulative_query(base, time_bucket, ("count", "users"))
    return base


def errors_list_query(tables: Tables, filter_: CompiledFilter, show_resolved: bool = False) -> str:
    """Errors grouped by id with their latest status, newest first, paged by ``@take``/``@skip``."""

    lines = [
        "WITH events AS (",
        "  SELECT eid, name, message, filename, created",
        f"  FROM {tables.errors}",
        f"  WHERE {base_where(filter_.sql_suffix)}",
        "),",
        _latest_status_cte(tables),
        "SELECT",
        "  events.eid,",
        "  ANY_VALUE(events.name) AS name,",
        "  ANY_VALUE(events.message) AS message,",
        "  ANY_VALUE(events.filename) AS filename,",
        "  COUNT(*) AS count,",
        "  FORMAT_DATETIME('%Y-%m-%d %H:%M:%S', DATETIME(MAX(events.created), @timezone)) AS last_seen,",
        "  COALESCE(latest_status.status, 'active') AS status",
        "FROM events",
        "LEFT JOIN latest_status ON events.eid = latest_status.eid",
    ]
    if not show_resolved:
        lines.append(f"WHERE {_visible_status_condition()}")
    lines.extend(
        [
            "GROUP BY events.eid, latest_status.status",
            "ORDER BY last_seen DESC",
            "LIMIT @take OFFSET @skip",
        ]
    )
    return "\n".join(lines)


def _breakdown_count(
    column: str,
    data_type: DataType,
    filter_: CompiledFilter,
    measure: Optional[PerfMeasure],
) -> str:
    if data_type == "performance":
        return f"ROUND({measure_expression(measure or 'median', 'page_load')} / 1000, 2)"
    if data_type == "errors":
        return "COUNT(*)"
    if filter_.custom_event_filter_applied:
        return "COUNT(*)"
    if column in {PAGE_PATH_COLUMN, "host"}:
        return "COUNT(*)"
    if filter_.page_inclusive:
        return "COUNT(*)"
    return "COUNT(DISTINCT psid)"


def dimension_breakdown_query(
    tables: Tables,
    column: str,
    data_type: DataType,
    filter_: CompiledFilter,
    measure: Optional[PerfMeasure] = None,
) -> str:
    """Return ``name``/``count`` rows (plus context columns) for one dimension.

    Pageview based counts switch to plain row counts when a custom event
    filter is active, for page and host columns, and when an inclusive page
    filter is set; otherwise unique sessions are counted.
    """

    column = identifier(column)
    extras = EXTRA_FIELDS.get(column, ())
    group_by = ", ".join([column, *extras])
    select_fields = [f"{column} AS name", *extras, f"{_breakdown_count(column, data_type, filter_, measure)} AS count"]
    table = tables.for_data_type(data_type, filter_.custom_event_filter_applied)

    return "\n".join(
        [
            f"SELECT {', '.join(select_fields)}",
            f"FROM {table}",
            f"WHERE {base_where(filter_.sql_suffix)} AND {column} IS NOT NULL",
            f"GROUP BY {group_by}",
            "ORDER BY count DESC",
        ]
    )


def session_pages_query(tables: Tables, filter_: CompiledFilter, *, exit_pages: bool = False) -> str:
    """Count sessions by the first (or last) page they viewed."""

    direction = "DESC" if exit_pages else "ASC"
    return "\n".join(
        [
            "WITH session_pages AS (",
            f"  SELECT psid, ARRAY_AGG(pg ORDER BY created {direction} LIMIT 1)[OFFSET(0)] AS page",
            f"  FROM {tables.analytics}",
            f"  WHERE {base_where(filter_.sql_suffix)} AND psid IS NOT NULL",
            "  GROUP BY psid",
            ")",
            "SELECT page AS name, COUNT(*) AS count",
            "FROM session_pages",
            "WHERE page IS NOT NULL",
            "GROUP BY page",
            "ORDER BY count DESC",
        ]
    )


def custom_event_counts_query(tables: Tables, filter_: CompiledFilter) -> str:
    return "\n".join(
        [
            "SELECT ev, COUNT(*) AS count",
            f"FROM {tables.custom_events}",
            f"WHERE {base_where(filter_.sql_suffix)}",
            "GROUP BY ev",
        ]
    )


def first_event_query(table: str) -> str:
    return f"SELECT MIN(created) AS first_created FROM {table} WHERE pid = @pid"


__all__ = [
    "PERFORMANCE_TIMINGS",
    "QUANTILE_POINTS",
    "Tables",
    "cumulative_query",
    "custom_event_counts_query",
    "custom_events_chart_query",
    "dimension_breakdown_query",
    "errors_chart_query",
    "errors_list_query",
    "first_event_query",
    "measure_expression",
    "normalize_measure",
    "performance_chart_query",
    "quantiles_expression",
    "session_counts_query",
    "session_pages_query",
    "traffic_chart_query",
]

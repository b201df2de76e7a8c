"""Current versus previous period comparisons for summary cards."""

from __future__ import annotations

from typing import List, Mapping, Optional

import pandas as pd

from .aggregation import PERFORMANCE_TIMINGS, Tables, measure_expression
from .query_helpers import time_window_condition
from .types import (
    CompiledFilter,
    PerfMeasure,
    PerformanceComparison,
    PerformanceMetrics,
    PeriodComparison,
    PeriodMetrics,
)

CURRENT_SORT_ORDER = 1
PREVIOUS_SORT_ORDER = 2


def _window(from_param: Optional[str], to_param: Optional[str]) -> str:
    if from_param is None or to_param is None:
        return ""
    return f" AND {time_window_condition(from_param=from_param, to_param=to_param)}"


def _traffic_period_query(
    tables: Tables,
    filter_: CompiledFilter,
    sort_order: int,
    from_param: Optional[str],
    to_param: Optional[str],
) -> str:
    where = f"pid = @pid{_window(from_param, to_param)}{filter_.sql_suffix}"

    if filter_.custom_event_filter_applied:
        return "\n".join(
            [
                f"SELECT {sort_order} AS sort_order, COUNT(*) AS total",
                f"FROM {tables.custom_events}",
                f"WHERE {where}",
            ]
        )

    return "\n".join(
        [
            "SELECT",
            f"  {sort_order} AS sort_order,",
            "  COUNT(*) AS total,",
            "  COUNT(DISTINCT psid) AS uniques,",
            "  COUNT(DISTINCT profile_id) AS users,",
            "  (",
            "    SELECT AVG(duration) FROM (",
            "      SELECT TIMESTAMP_DIFF(MAX(last_seen), MIN(first_seen), SECOND) AS duration",
            f"      FROM {tables.sessions}",
            "      WHERE pid = @pid",
            f"        AND psid IN (SELECT DISTINCT psid FROM {tables.analytics} WHERE {where})",
            "      GROUP BY psid",
            "    )",
            "  ) AS sdur",
            f"FROM {tables.analytics}",
            f"WHERE {where}",
        ]
    )


def traffic_summary_query(tables: Tables, filter_: CompiledFilter, all_time: bool = False) -> str:
    """Return the aggregates for the current and the previous window in one round trip.

    The current window is ``@groupFrom``..``@groupTo`` and the previous one
    ``@prevFrom``..``@groupFrom``.  Rows are tagged with ``sort_order`` since
    ``UNION ALL`` keeps no order.  ``all_time`` drops the windows and the
    previous period altogether.
    """

    if all_time:
        return _traffic_period_query(tables, filter_, CURRENT_SORT_ORDER, None, None)

    current = _traffic_period_query(tables, filter_, CURRENT_SORT_ORDER, "groupFrom", "groupTo")
    previous = _traffic_period_query(tables, filter_, PREVIOUS_SORT_ORDER, "prevFrom", "groupFrom")
    return f"{current}\nUNION ALL\n{previous}"


def _performance_period_query(
    tables: Tables,
    filter_: CompiledFilter,
    measure: PerfMeasure,
    sort_order: int,
    from_param: Optional[str],
    to_param: Optional[str],
) -> str:
    metrics = ", ".join(f"{measure_expression(measure, column)} AS {column}" for column in PERFORMANCE_TIMINGS)
    return "\n".join(
        [
            f"SELECT {sort_order} AS sort_order, {metrics}",
            f"FROM {tables.performance}",
            f"WHERE pid = @pid{_window(from_param, to_param)}{filter_.sql_suffix}",
        ]
    )


def performance_summary_query(
    tables: Tables,
    filter_: CompiledFilter,
    measure: PerfMeasure,
    all_time: bool = False,
) -> str:
    if all_time:
        return _performance_period_query(tables, filter_, measure, CURRENT_SORT_ORDER, None, None)

    current = _performance_period_query(tables, filter_, measure, CURRENT_SORT_ORDER, "groupFrom", "groupTo")
    previous = _performance_period_query(tables, filter_, measure, PREVIOUS_SORT_ORDER, "prevFrom", "groupFrom")
    return f"{current}\nUNION ALL\n{previous}"


def sorted_periods(df: pd.DataFrame) -> List[dict]:
    """Return the rows ordered ``[current, previous]`` regardless of arrival order."""

    if df.empty:
        return []
    ordered = df.sort_values("sort_order", kind="stable")
    return ordered.astype(object).where(ordered.notna(), None).to_dict(orient="records")


def _number(row: Mapping, key: str) -> float:
    value = row.get(key)
    if value is None or pd.isna(value):
        return 0
    return value


def bounce_rate(total: int, unique: int, custom_event_filter_applied: bool) -> float:
    if total > 0 and not custom_event_filter_applied:
        return round(unique * 100 / total, 1)
    return 0


def period_metrics(row: Optional[Mapping], custom_event_filter_applied: bool) -> PeriodMetrics:
    if row is None:
        return PeriodMetrics()
    total = int(_number(row, "total"))
    unique = int(_number(row, "uniques"))
    return PeriodMetrics(
        total=total,
        unique=unique,
        users=int(_number(row, "users")),
        sdur=float(_number(row, "sdur")),
        bounce_rate=bounce_rate(total, unique, custom_event_filter_applied),
    )


def compare_periods(
    current: PeriodMetrics,
    previous: PeriodMetrics,
    custom_event_filter_applied: bool = False,
) -> PeriodComparison:
    """Signed ``current - previous`` deltas.

    The bounce rate delta is reported with the opposite sign.
    """

    return PeriodComparison(
        current=current,
        previous=previous,
        change=current.total - previous.total,
        unique_change=current.unique - previous.unique,
        users_change=current.users - previous.users,
        bounce_rate_change=(current.bounce_rate - previous.bounce_rate) * -1,
        sdur_change=current.sdur - previous.sdur,
        custom_event_filter_applied=custom_event_filter_applied,
    )


def compare_all_time(current: PeriodMetrics, custom_event_filter_applied: bool = False) -> PeriodComparison:
    """Compare all-time metrics against a zero baseline."""

    return PeriodComparison(
        current=current,
        previous=PeriodMetrics(),
        change=current.total,
        unique_change=current.unique,
        users_change=current.users,
        bounce_rate_change=current.bounce_rate,
        sdur_change=current.sdur,
        custom_event_filter_applied=custom_event_filter_applied,
    )


def _seconds(milliseconds: float) -> float:
    return round(milliseconds / 1000, 2)


def performance_metrics(row: Optional[Mapping]) -> PerformanceMetrics:
    if row is None:
        return PerformanceMetrics()
    return PerformanceMetrics(
        frontend=_seconds(_number(row, "render") + _number(row, "dom_load")),
        network=_seconds(
            _number(row, "dns") + _number(row, "tls") + _number(row, "conn") + _number(row, "response")
        ),
        backend=_seconds(_number(row, "ttfb")),
    )


def compare_performance(current: PerformanceMetrics, previous: PerformanceMetrics) -> PerformanceComparison:
    return PerformanceComparison(
        current=current,
        previous=previous,
        frontend_change=round(current.frontend - previous.frontend, 2),
        network_change=round(current.network - previous.network, 2),
        backend_change=round(current.backend - previous.backend, 2),
    )


__all__ = [
    "bounce_rate",
    "compare_all_time",
    "compare_performance",
    "compare_periods",
    "performance_metrics",
    "performance_summary_query",
    "period_metrics",
    "sorted_periods",
    "traffic_summary_query",
]

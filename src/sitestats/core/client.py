"""Primary client issuing analytics queries against BigQuery."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Protocol, Tuple, TypeVar

import pandas as pd
import structlog
from google.api_core.exceptions import GoogleAPIError
from google.cloud import bigquery

from ..cache import KeyValueCache, RedisCache
from ..config import Settings
from ._columns import EXTRA_FIELDS, data_type_columns
from .aggregation import (
    PERFORMANCE_TIMINGS,
    Tables,
    custom_event_counts_query,
    custom_events_chart_query,
    dimension_breakdown_query,
    errors_chart_query,
    errors_list_query,
    first_event_query,
    normalize_measure,
    performance_chart_query,
    session_counts_query,
    session_pages_query,
    traffic_chart_query,
)
from .dates import allowed_time_buckets, previous_window, resolve_time_range, safe_timezone
from .errors import NoDataError, NotFoundError, RangeTooLarge, UpstreamQueryError
from .filters import compile_filters
from .funnel import backfill, empty_funnel, format_funnel, funnel_query, parse_funnel_steps
from .query_helpers import to_records
from .sessions import count_live_visitors, derive_session_id, register_session, register_session_activity
from .sql import to_query_parameters
from .summary import (
    compare_all_time,
    compare_performance,
    compare_periods,
    performance_metrics,
    performance_summary_query,
    period_metrics,
    sorted_periods,
    traffic_summary_query,
)
from .timeseries import (
    custom_event_series,
    errors_series,
    generate_x_axis,
    performance_series,
    quantile_series,
    scatter,
    traffic_series,
)
from .types import (
    Chart,
    ChartRenderMode,
    CompiledFilter,
    DataType,
    DimensionCount,
    FunnelStep,
    ParamValue,
    PerformanceComparison,
    PeriodComparison,
    TimeBucket,
    TimeRange,
    UserFlow,
)
from .user_flow import build_user_flow, edges_from_frame, user_flow_query

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_ALL_TIME_TABLES = {
    "analytics": "analytics",
    "customEV": "custom_events",
    "performance": "performance",
    "errors": "errors",
}

# Periods whose summary is always computed on an hourly grid.
_HOURLY_SUMMARY_PERIODS = ("today", "yesterday", "custom")


class ProjectsProvider(Protocol):
    """Project metadata owned outside of the query engine."""

    def get_funnel_steps(self, pid: str, funnel_id: str) -> Optional[Sequence[str]]: ...


class SiteStats:
    """Query engine for a single BigQuery dataset of website analytics."""

    def __init__(
        self,
        dataset_id: str | None = None,
        *,
        settings: Settings | None = None,
        client: bigquery.Client | None = None,
        cache: KeyValueCache | None = None,
        projects: ProjectsProvider | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.tables = Tables(dataset_id or self.settings.dataset_id)
        self.client = client or bigquery.Client()
        if cache is None and self.settings.redis_url:
            cache = RedisCache.from_url(self.settings.redis_url)
        self.cache = cache
        self.projects = projects

    def _query(self, sql: str, params: Mapping[str, ParamValue] | None = None) -> pd.DataFrame:
        """Execute ``sql`` with named ``params`` and return the resulting dataframe."""

        job_config = bigquery.QueryJobConfig(query_parameters=to_query_parameters(params or {}))
        try:
            return self.client.query(sql, job_config=job_config).result().to_dataframe()
        except GoogleAPIError as exc:
            logger.error("query_failed", sql=sql, pid=(params or {}).get("pid"), error=str(exc))
            raise UpstreamQueryError() from exc

    def _run_concurrently(self, tasks: Mapping[str, Callable[[], T]]) -> Dict[str, T]:
        """Run independent ``tasks`` in parallel; the first failure propagates."""

        if not tasks:
            return {}
        workers = max(1, min(len(tasks), self.settings.max_concurrent_queries))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {name: executor.submit(task) for name, task in tasks.items()}
            return {name: future.result() for name, future in futures.items()}

    @staticmethod
    def _params(
        pid: str,
        time_range: TimeRange,
        filter_: CompiledFilter | None = None,
        **extra: ParamValue,
    ) -> Dict[str, ParamValue]:
        params: Dict[str, ParamValue] = {
            "pid": pid,
            "groupFrom": time_range.from_utc,
            "groupTo": time_range.to_utc,
            "timezone": time_range.timezone,
        }
        if filter_ is not None:
            params.update(filter_.parameters)
        params.update(extra)
        return params

    def resolve_time_range(
        self,
        pid: str | None = None,
        *,
        from_: str | None = None,
        to: str | None = None,
        period: str | None = None,
        timezone: str | None = None,
        time_bucket: TimeBucket | None = None,
        now: pd.Timestamp | None = None,
    ) -> TimeRange:
        """Resolve the request time frame; ``period="all"`` looks up the project's first event."""

        tz = safe_timezone(timezone, self.settings.default_timezone)
        diff = None
        if period == "all" and not (from_ and to) and pid is not None:
            buckets, diff = self.time_bucket_for_all_time(pid, now=now)
            if time_bucket not in buckets:
                time_bucket = buckets[0]
        return resolve_time_range(
            from_=from_,
            to=to,
            time_bucket=time_bucket,
            period=period,
            timezone=tz,
            diff=diff,
            now=now,
        )

    def compile_filters(
        self,
        filters: str | None,
        data_type: DataType = "analytics",
        ignore_event_filter: bool = False,
    ) -> CompiledFilter:
        return compile_filters(
            filters,
            data_type,
            ignore_event_filter,
            analytics_table=self.tables.analytics,
        )

    def time_bucket_for_all_time(
        self,
        pid: str,
        table: str = "analytics",
        now: pd.Timestamp | None = None,
    ) -> Tuple[List[TimeBucket], int]:
        """Return the buckets legal for the whole history of ``pid`` and its length in days."""

        attribute = _ALL_TIME_TABLES.get(table)
        if attribute is None:
            raise ValueError(f"Unknown table: {table}")

        df = self._query(first_event_query(getattr(self.tables, attribute)), {"pid": pid})
        first_created = None if df.empty else df["first_created"].iloc[0]
        if first_created is None or pd.isna(first_created):
            return ["day"], 0

        current = pd.Timestamp.now(tz="UTC") if now is None else pd.Timestamp(now)
        first = pd.Timestamp(first_created)
        if first.tzinfo is None:
            first = first.tz_localize("UTC")
        if current.tzinfo is None:
            current = current.tz_localize("UTC")
        diff = (current - first).days

        try:
            return list(allowed_time_buckets(diff)), diff
        except RangeTooLarge:
            logger.error("all_time_range_too_large", pid=pid, diff=diff)
            return ["year"], diff

    def build_chart(
        self,
        pid: str,
        data_type: DataType,
        time_range: TimeRange,
        filter_: CompiledFilter,
        mode: ChartRenderMode = "periodical",
        measure: str | None = None,
    ) -> Chart:
        """Return a dense chart for ``time_range``, zero-filled where no rows exist."""

        time_bucket = time_range.time_bucket
        axis = generate_x_axis(time_bucket, time_range.from_local, time_range.to_local, time_range.timezone)
        labels = axis.shifted
        params = self._params(pid, time_range, filter_)
        cumulative = mode == "cumulative"

        if data_type == "performance":
            resolved_measure = normalize_measure(measure, allow_quantiles=True)
            rows = self._query(performance_chart_query(self.tables, time_bucket, filter_, resolved_measure), params)
            if resolved_measure == "quantiles":
                return Chart(x=labels, series=quantile_series(rows, labels, PERFORMANCE_TIMINGS))
            return Chart(x=labels, series=performance_series(rows, labels, PERFORMANCE_TIMINGS))

        if data_type == "errors":
            rows = self._query(errors_chart_query(self.tables, time_bucket, filter_, mode), params)
            return Chart(x=labels, series=errors_series(rows, labels, cumulative))

        if filter_.custom_event_filter_applied:
            sql = custom_events_chart_query(self.tables, time_bucket, filter_, mode, by_event_name=False)
            rows = self._query(sql, params)
            counts = custom_event_series(rows, labels, cumulative).get("_unknown_event", [0] * len(labels))
            return Chart(x=labels, series={"visits": counts, "uniques": list(counts), "sdur": [0] * len(labels)})

        rows = self._query(traffic_chart_query(self.tables, time_bucket, filter_, mode), params)
        return Chart(x=labels, series=traffic_series(rows, labels, cumulative))

    def build_custom_events_chart(
        self,
        pid: str,
        time_range: TimeRange,
        filter_: CompiledFilter,
        mode: ChartRenderMode = "periodical",
    ) -> Chart:
        """Return one series per custom event name."""

        time_bucket = time_range.time_bucket
        axis = generate_x_axis(time_bucket, time_range.from_local, time_range.to_local, time_range.timezone)
        rows = self._query(
            custom_events_chart_query(self.tables, time_bucket, filter_, mode),
            self._params(pid, time_range, filter_),
        )
        return Chart(x=axis.shifted, series=custom_event_series(rows, axis.shifted, mode == "cumulative"))

    def build_session_chart(self, pid: str, psid: str, time_range: TimeRange) -> Chart:
        """Return pageview, custom event and error counts of one session; empty series are omitted."""

        time_bucket = time_range.time_bucket
        axis = generate_x_axis(time_bucket, time_range.from_local, time_range.to_local, time_range.timezone)
        labels = axis.shifted
        params = self._params(pid, time_range, psid=psid)
        sources = {
            "pageviews": self.tables.analytics,
            "customEvents": self.tables.custom_events,
            "errors": self.tables.errors,
        }
        results = self._run_concurrently(
            {
                name: (lambda table=table, name=name: self._query(session_counts_query(table, time_bucket, name), params))
                for name, table in sources.items()
            }
        )

        series = {}
        for name, rows in results.items():
            counts = scatter(rows, labels, (name,))[name]
            if any(count > 0 for count in counts):
                series[name] = counts
        return Chart(x=labels, series=series)

    def request_dimensions(
        self,
        pid: str,
        data_type: DataType,
        time_range: TimeRange,
        filter_: CompiledFilter,
        measure: str | None = None,
    ) -> Dict[str, List[DimensionCount]]:
        """Return the per value breakdown of every dimension column of ``data_type``."""

        resolved_measure = normalize_measure(measure) if data_type == "performance" else None
        params = self._params(pid, time_range, filter_)

        tasks: Dict[str, Callable[[], pd.DataFrame]] = {}
        for column in data_type_columns(data_type):
            sql = dimension_breakdown_query(self.tables, column, data_type, filter_, resolved_measure)
            tasks[column] = lambda sql=sql: self._query(sql, params)

        if data_type == "analytics" and not filter_.custom_event_filter_applied:
            for name, exit_pages in (("entryPage", False), ("exitPage", True)):
                sql = session_pages_query(self.tables, filter_, exit_pages=exit_pages)
                tasks[name] = lambda sql=sql: self._query(sql, params)

        results = self._run_concurrently(tasks)
        breakdown = {
            column: [
                DimensionCount(
                    name=record.get("name"),
                    count=record.get("count") or 0,
                    extras={key: record.get(key) for key in EXTRA_FIELDS.get(column, ())},
                )
                for record in to_records(rows)
            ]
            for column, rows in results.items()
        }

        if data_type in ("performance", "errors") and not any(breakdown.values()):
            raise NoDataError("There are no parameters for the specified time frames")
        return breakdown

    def request_errors(
        self,
        pid: str,
        time_range: TimeRange,
        filter_: CompiledFilter,
        options: str | None = None,
        take: int | None = None,
        skip: int = 0,
    ) -> List[dict]:
        """Return grouped errors with their latest status, newest first."""

        parsed_options: dict = {}
        if options:
            try:
                parsed_options = json.loads(options)
            except ValueError:
                logger.warning("error_options_unparsable", options=options)
            if not isinstance(parsed_options, dict):
                parsed_options = {}

        show_resolved = bool(parsed_options.get("showResolved", False))
        params = self._params(
            pid,
            time_range,
            filter_,
            take=take or self.settings.errors_page_size,
            skip=skip,
        )
        return to_records(self._query(errors_list_query(self.tables, filter_, show_resolved), params))

    def get_custom_events(self, pid: str, time_range: TimeRange, filter_: CompiledFilter) -> Dict[str, int]:
        """Return event counts per custom event name, ``{}`` when the store is unavailable."""

        try:
            rows = self._query(custom_event_counts_query(self.tables, filter_), self._params(pid, time_range, filter_))
        except UpstreamQueryError:
            logger.warning("custom_events_unavailable", pid=pid)
            return {}
        return {str(record["ev"]): int(record["count"]) for record in to_records(rows)}

    def funnel_steps(
        self,
        pid: str,
        steps: str | Sequence[str] | None = None,
        funnel_id: str | None = None,
    ) -> List[str]:
        if funnel_id:
            stored = self.projects.get_funnel_steps(pid, funnel_id) if self.projects else None
            if not stored:
                raise NotFoundError("The provided funnelId is incorrect")
            return list(stored)
        return parse_funnel_steps(steps, self.settings.min_funnel_steps, self.settings.max_funnel_steps)

    def compute_funnel(
        self,
        pid: str,
        time_range: TimeRange,
        steps: str | Sequence[str] | None = None,
        funnel_id: str | None = None,
    ) -> List[FunnelStep]:
        """Return one entry per funnel step, all zeros when nobody entered the funnel."""

        pages = self.funnel_steps(pid, steps, funnel_id)
        step_params = {f"v{index}": value for index, value in enumerate(pages)}
        params = self._params(pid, time_range, window=self.settings.funnel_window_seconds, **step_params)

        df = self._query(funnel_query(self.tables, len(pages)), params)
        if df.empty:
            return empty_funnel(pages)
        return format_funnel(backfill(df, len(pages)), pages)

    def compute_user_flow(self, pid: str, time_range: TimeRange, filter_: CompiledFilter) -> UserFlow:
        df = self._query(user_flow_query(self.tables, filter_), self._params(pid, time_range, filter_))
        return build_user_flow(edges_from_frame(df))

    def _summary_range(
        self,
        period: str | None,
        from_: str | None,
        to: str | None,
        timezone: str | None,
        time_bucket: TimeBucket | None,
        now: pd.Timestamp | None,
    ) -> TimeRange:
        if period in _HOURLY_SUMMARY_PERIODS:
            time_bucket = "hour"
        return resolve_time_range(
            from_=from_,
            to=to,
            time_bucket=time_bucket or "day",
            period=None if period == "custom" else period,
            timezone=safe_timezone(timezone, self.settings.default_timezone),
            now=now,
            check_time_bucket=False,
        )

    def _summarise(self, pid: str, produce: Callable[[], T]) -> T:
        try:
            return produce()
        except (UpstreamQueryError, KeyError, IndexError, TypeError) as exc:
            logger.exception("summary_failed", pid=pid)
            raise UpstreamQueryError("Can't process the provided PID. Please, try again later.") from exc

    def compute_summary(
        self,
        pids: Sequence[str],
        *,
        period: str | None = None,
        from_: str | None = None,
        to: str | None = None,
        timezone: str | None = None,
        time_bucket: TimeBucket | None = None,
        filters: str | None = None,
        now: pd.Timestamp | None = None,
    ) -> Dict[str, PeriodComparison]:
        """Compare traffic of the requested window with the window right before it, per project.

        The same compiled filter is used for every project and both windows.
        ``period="all"`` is compared against a zero baseline.
        """

        time_range = self._summary_range(period, from_, to, timezone, time_bucket, now)
        filter_ = self.compile_filters(filters, "analytics")
        all_time = period == "all"
        prev_from, _ = previous_window(time_range)
        sql = traffic_summary_query(self.tables, filter_, all_time)
        custom = filter_.custom_event_filter_applied

        def summarise(pid: str) -> PeriodComparison:
            rows = sorted_periods(self._query(sql, self._params(pid, time_range, filter_, prevFrom=prev_from)))
            if all_time:
                return compare_all_time(period_metrics(rows[0], custom), custom)
            return compare_periods(
                period_metrics(rows[0], custom),
                period_metrics(rows[1] if len(rows) > 1 else None, custom),
                custom,
            )

        return self._run_concurrently(
            {pid: (lambda pid=pid: self._summarise(pid, lambda: summarise(pid))) for pid in pids}
        )

    def compute_performance_summary(
        self,
        pids: Sequence[str],
        *,
        period: str | None = None,
        from_: str | None = None,
        to: str | None = None,
        timezone: str | None = None,
        filters: str | None = None,
        measure: str | None = None,
        now: pd.Timestamp | None = None,
    ) -> Dict[str, PerformanceComparison]:
        """Compare frontend, network and backend timings (seconds) with the previous window."""

        resolved_measure = normalize_measure(measure)
        time_range = self._summary_range(period, from_, to, timezone, None, now)
        filter_ = self.compile_filters(filters, "performance", ignore_event_filter=True)
        all_time = period == "all"
        prev_from, _ = previous_window(time_range)
        sql = performance_summary_query(self.tables, filter_, resolved_measure, all_time)

        def summarise(pid: str) -> PerformanceComparison:
            rows = sorted_periods(self._query(sql, self._params(pid, time_range, filter_, prevFrom=prev_from)))
            current = performance_metrics(rows[0])
            if all_time:
                return compare_performance(current, performance_metrics(None))
            return compare_performance(current, performance_metrics(rows[1] if len(rows) > 1 else None))

        return self._run_concurrently(
            {pid: (lambda pid=pid: self._summarise(pid, lambda: summarise(pid))) for pid in pids}
        )

    def register_session(self, pid: str, user_agent: str, ip: str, salt: str) -> Tuple[bool, str]:
        """Derive the session id of a visitor and mark it active; return ``(is_new, psid)``."""

        if self.cache is None:
            raise ValueError("A cache is required for session tracking")
        ttl = self.settings.session_ttl_seconds
        psid = derive_session_id(pid, user_agent, ip, salt)
        is_new = register_session(self.cache, psid, ttl)
        register_session_activity(self.cache, psid, pid, ttl)
        return is_new, psid

    def live_visitors(self, pid: str) -> int:
        if self.cache is None:
            logger.warning("live_visitors_unavailable", pid=pid, reason="no cache configured")
            return 0
        return count_live_visitors(self.cache, pid)


__all__ = ["ProjectsProvider", "SiteStats"]

"""Dense chart axes and helpers scattering sparse bucket rows onto them."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Dict, List

import pandas as pd

from .dates import bucket_offset, is_gmt0, start_of
from .types import TimeBucket, XAxis

_LABEL_FORMATS = {
    "minute": "%Y-%m-%d %H:%M:%S",
    "hour": "%Y-%m-%d %H:%M:%S",
    "day": "%Y-%m-%d",
    "month": "%Y-%m",
    "year": "%Y",
}


def label_format(time_bucket: TimeBucket) -> str:
    fmt = _LABEL_FORMATS.get(time_bucket)
    if fmt is None:
        raise ValueError(f"The provided time bucket ({time_bucket}) is incorrect")
    return fmt


def _localize(value: str, tz: str) -> pd.Timestamp:
    return pd.Timestamp(value).tz_localize(tz, ambiguous=False, nonexistent="shift_forward")


def generate_x_axis(time_bucket: TimeBucket, from_: str, to: str, timezone: str) -> XAxis:
    """Return every bucket between ``from_`` and ``to`` (local times) inclusive.

    Each bucket is labelled twice: ``utc`` holds the bucket start converted to
    UTC and ``shifted`` keeps the local wall clock time.  Aggregations bucket
    on local time, so result rows are matched against ``shifted``.
    """

    fmt = label_format(time_bucket)
    tz = "UTC" if is_gmt0(timezone) else timezone
    current = start_of(_localize(from_, tz), time_bucket)
    last = start_of(_localize(to, tz), time_bucket)
    step = bucket_offset(time_bucket)

    utc: List[str] = []
    shifted: List[str] = []
    while current <= last:
        utc.append(current.tz_convert("UTC").strftime(fmt))
        shifted.append(current.strftime(fmt))
        current = current + step

    if is_gmt0(timezone):
        return XAxis(utc=utc, shifted=list(utc))
    return XAxis(utc=utc, shifted=shifted)


def _part(row: Mapping, name: str):
    value = row.get(name)
    if value is None or pd.isna(value):
        return None
    return int(value)


def generate_date_string(row: Mapping) -> str:
    """Return the axis label for a row carrying ``year``/``month``/``day``/``hour``/``minute``."""

    year = _part(row, "year")
    month = _part(row, "month")
    day = _part(row, "day")
    hour = _part(row, "hour")
    minute = _part(row, "minute")

    date_string = f"{year}"
    if month is not None:
        date_string += f"-{month:02d}"
    if day is not None:
        date_string += f"-{day:02d}"
    if hour is not None:
        date_string += f" {hour:02d}:{(minute or 0):02d}:00"
    return date_string


def scatter(rows: pd.DataFrame, labels: Sequence[str], columns: Sequence[str]) -> Dict[str, list]:
    """Place ``columns`` of ``rows`` at the position of their label, zero elsewhere.

    Rows whose label is not on the axis are dropped.
    """

    if rows.empty:
        return {column: [0] * len(labels) for column in columns}

    keyed = rows.assign(_label=[generate_date_string(row) for row in rows.to_dict(orient="records")])
    keyed = keyed.drop_duplicates("_label", keep="last").set_index("_label")
    aligned = keyed.reindex(list(labels))

    series: Dict[str, list] = {}
    for column in columns:
        if column not in aligned:
            series[column] = [0] * len(labels)
            continue
        values = aligned[column].fillna(0)
        if pd.api.types.is_integer_dtype(rows[column]):
            values = values.astype("int64")
        series[column] = values.tolist()
    return series


def forward_fill_cumulative(values: Sequence[float]) -> list:
    """Carry the previous running total into buckets that have no rows."""

    filled = list(values)
    for index in range(1, len(filled)):
        if filled[index] == 0:
            filled[index] = filled[index - 1]
    return filled


def milliseconds_to_seconds(values: Sequence[float]) -> list:
    return [round(float(value) / 1000, 2) for value in values]


def traffic_series(rows: pd.DataFrame, labels: Sequence[str], cumulative: bool = False) -> Dict[str, list]:
    scattered = scatter(rows, labels, ("pageviews", "uniques", "sdur"))
    visits = scattered["pageviews"]
    uniques = scattered["uniques"]
    if cumulative:
        visits = forward_fill_cumulative(visits)
        uniques = forward_fill_cumulative(uniques)
    return {
        "visits": visits,
        "uniques": uniques,
        "sdur": [round(value) for value in scattered["sdur"]],
    }


def custom_event_series(rows: pd.DataFrame, labels: Sequence[str], cumulative: bool = False) -> Dict[str, list]:
    """Return one ``count`` series per event name.

    Rows without an ``ev`` column are reported under ``_unknown_event``.
    """

    if rows.empty:
        return {}
    if "ev" not in rows:
        rows = rows.assign(ev="_unknown_event")

    series: Dict[str, list] = {}
    for ev, group in rows.groupby("ev", sort=False):
        counts = scatter(group, labels, ("count",))["count"]
        if not any(counts):
            continue
        series[str(ev)] = forward_fill_cumulative(counts) if cumulative else counts
    return series


def performance_series(rows: pd.DataFrame, labels: Sequence[str], columns: Sequence[str]) -> Dict[str, list]:
    scattered = scatter(rows, labels, columns)
    return {column: milliseconds_to_seconds(values) for column, values in scattered.items()}


def quantile_series(rows: pd.DataFrame, labels: Sequence[str], columns: Sequence[str]) -> Dict[str, list]:
    """Sum the per column ``[p50, p75, p95]`` arrays of each row and split them into series."""

    if rows.empty:
        return {name: [0] * len(labels) for name in ("p50", "p75", "p95")}

    totals = [[0.0, 0.0, 0.0] for _ in range(len(rows))]
    for index, record in enumerate(rows.to_dict(orient="records")):
        for column in columns:
            quantiles = record.get(column)
            if quantiles is None:
                continue
            for position, value in enumerate(list(quantiles)[:3]):
                if value is not None and not pd.isna(value):
                    totals[index][position] += float(value)

    summed = rows.assign(
        p50=[total[0] for total in totals],
        p75=[total[1] for total in totals],
        p95=[total[2] for total in totals],
    )
    return performance_series(summed, labels, ("p50", "p75", "p95"))


def errors_series(rows: pd.DataFrame, labels: Sequence[str], cumulative: bool = False) -> Dict[str, list]:
    scattered = scatter(rows, labels, ("count", "users"))
    if cumulative:
        return {name: forward_fill_cumulative(values) for name, values in scattered.items()}
    return scattered


__all__ = [
    "custom_event_series",
    "errors_series",
    "forward_fill_cumulative",
    "generate_date_string",
    "generate_x_axis",
    "label_format",
    "milliseconds_to_seconds",
    "performance_series",
    "quantile_series",
    "scatter",
    "traffic_series",
]

from __future__ import annotations

import pandas as pd

from sitestats.core.timeseries import (
    custom_event_series,
    errors_series,
    forward_fill_cumulative,
    generate_date_string,
    generate_x_axis,
    quantile_series,
    scatter,
    traffic_series,
)

DAY_LABELS = ["2024-01-01", "2024-01-02", "2024-01-03"]


def test_generate_x_axis_days() -> None:
    axis = generate_x_axis("day", "2024-01-01 00:00:00", "2024-01-03 23:59:59", "Etc/GMT")

    assert axis.utc == DAY_LABELS
    assert axis.shifted == DAY_LABELS
    assert len(axis) == 3


def test_generate_x_axis_keeps_local_wall_clock() -> None:
    axis = generate_x_axis("hour", "2024-01-01 00:00:00", "2024-01-01 02:30:00", "Asia/Tokyo")

    assert axis.shifted == ["2024-01-01 00:00:00", "2024-01-01 01:00:00", "2024-01-01 02:00:00"]
    assert axis.utc == ["2023-12-31 15:00:00", "2023-12-31 16:00:00", "2023-12-31 17:00:00"]


def test_generate_x_axis_months_and_years() -> None:
    months = generate_x_axis("month", "2023-11-15 00:00:00", "2024-02-01 00:00:00", "Etc/GMT")
    years = generate_x_axis("year", "2022-05-01 00:00:00", "2024-01-01 00:00:00", "Etc/GMT")

    assert months.shifted == ["2023-11", "2023-12", "2024-01", "2024-02"]
    assert years.shifted == ["2022", "2023", "2024"]


def test_generate_date_string() -> None:
    assert generate_date_string({"year": 2024, "month": 1, "day": 2, "hour": 5}) == "2024-01-02 05:00:00"
    assert generate_date_string({"year": 2024, "month": 1, "day": 2, "hour": 5, "minute": 7}) == "2024-01-02 05:07:00"
    assert generate_date_string({"year": 2024, "month": 3}) == "2024-03"
    assert generate_date_string({"year": 2024}) == "2024"


def test_scatter_places_rows_by_label() -> None:
    rows = pd.DataFrame({"year": [2024], "month": [1], "day": [2], "count": [5]})

    assert scatter(rows, DAY_LABELS, ("count",)) == {"count": [0, 5, 0]}


def test_scatter_drops_rows_off_the_axis_and_fills_missing_columns() -> None:
    rows = pd.DataFrame({"year": [2024, 2024], "month": [1, 2], "day": [3, 1], "count": [2, 9]})

    assert scatter(rows, DAY_LABELS, ("count", "users")) == {"count": [0, 0, 2], "users": [0, 0, 0]}


def test_scatter_empty_rows() -> None:
    assert scatter(pd.DataFrame(), DAY_LABELS, ("count",)) == {"count": [0, 0, 0]}


def test_forward_fill_cumulative() -> None:
    assert forward_fill_cumulative([1, 0, 3, 0]) == [1, 1, 3, 3]


def test_traffic_series() -> None:
    rows = pd.DataFrame(
        {
            "year": [2024, 2024],
            "month": [1, 1],
            "day": [1, 3],
            "sdur": [12.4, 30.6],
            "pageviews": [10, 4],
            "uniques": [7, 3],
        }
    )

    assert traffic_series(rows, DAY_LABELS) == {
        "visits": [10, 0, 4],
        "uniques": [7, 0, 3],
        "sdur": [12, 0, 31],
    }
    assert traffic_series(rows, DAY_LABELS, cumulative=True)["visits"] == [10, 10, 4]


def test_custom_event_series_splits_by_name() -> None:
    rows = pd.DataFrame(
        {
            "year": [2024, 2024, 2024],
            "month": [1, 1, 1],
            "day": [1, 2, 2],
            "ev": ["signup", "signup", "purchase"],
            "count": [1, 2, 3],
        }
    )

    assert custom_event_series(rows, DAY_LABELS) == {
        "signup": [1, 2, 0],
        "purchase": [0, 3, 0],
    }


def test_custom_event_series_without_names() -> None:
    rows = pd.DataFrame({"year": [2024], "month": [1], "day": [2], "count": [4]})

    assert custom_event_series(rows, DAY_LABELS) == {"_unknown_event": [0, 4, 0]}


def test_quantile_series_sums_columns_in_seconds() -> None:
    rows = pd.DataFrame(
        {
            "year": [2024],
            "month": [1],
            "day": [1],
            "dns": [[100, 200, 300]],
            "ttfb": [[400, 500, 700]],
        }
    )

    series = quantile_series(rows, DAY_LABELS, ("dns", "ttfb"))

    assert series == {"p50": [0.5, 0.0, 0.0], "p75": [0.7, 0.0, 0.0], "p95": [1.0, 0.0, 0.0]}


def test_errors_series_cumulative() -> None:
    rows = pd.DataFrame({"year": [2024], "month": [1], "day": [1], "count": [3], "users": [2]})

    assert errors_series(rows, DAY_LABELS, cumulative=True) == {"count": [3, 3, 3], "users": [2, 2, 2]}

from __future__ import annotations

import pandas as pd
import pytest

from sitestats.core.dates import (
    allowed_time_buckets,
    check_time_bucket_allowed,
    is_valid_date,
    lowest_possible_time_bucket,
    previous_window,
    resolve_time_range,
    safe_timezone,
)
from sitestats.core.errors import BucketNotAllowed, InvalidDate, MissingTimeframe, RangeTooLarge

NOW = pd.Timestamp("2024-05-10 13:45:12", tz="UTC")


@pytest.mark.parametrize(
    ("diff", "expected"),
    [
        (0, ("minute", "hour")),
        (1, ("hour", "day", "month")),
        (7, ("hour", "day", "month")),
        (8, ("day", "month")),
        (400, ("month",)),
        (1000, ("month", "year")),
        (5000, ("year",)),
    ],
)
def test_allowed_time_buckets_staircase(diff: int, expected: tuple) -> None:
    assert allowed_time_buckets(diff) == expected


def test_allowed_time_buckets_rejects_huge_ranges() -> None:
    with pytest.raises(RangeTooLarge):
        allowed_time_buckets(100_000)


def test_check_time_bucket_allowed_rejects_minute_over_two_days() -> None:
    with pytest.raises(BucketNotAllowed):
        check_time_bucket_allowed("minute", "2024-01-01", "2024-01-02")

    check_time_bucket_allowed("hour", "2024-01-01", "2024-01-02")


@pytest.mark.parametrize(
    ("period", "expected"),
    [("1h", "minute"), ("7d", "hour"), ("4w", "day"), ("12M", "month"), ("all", "year")],
)
def test_lowest_possible_time_bucket_for_periods(period: str, expected: str) -> None:
    assert lowest_possible_time_bucket(period) == expected


def test_lowest_possible_time_bucket_for_explicit_range() -> None:
    assert lowest_possible_time_bucket(None, "2024-01-01", "2024-01-03") == "hour"
    assert lowest_possible_time_bucket(None, "2023-01-01", "2024-02-05") == "month"


def test_safe_timezone_falls_back_on_unknown_names() -> None:
    assert safe_timezone("Europe/Berlin") == "Europe/Berlin"
    assert safe_timezone("Not/AZone") == "Etc/GMT"
    assert safe_timezone(None, "UTC") == "UTC"


def test_is_valid_date() -> None:
    assert is_valid_date("2024-02-29")
    assert not is_valid_date("2024-02-30")
    assert not is_valid_date("2024-2-3")
    assert not is_valid_date(None)


def test_explicit_range_snaps_to_bucket_boundaries() -> None:
    tr = resolve_time_range(from_="2024-01-01", to="2024-01-03", time_bucket="day")

    assert tr.from_utc == "2024-01-01 00:00:00"
    assert tr.to_utc == "2024-01-03 23:59:59"
    assert tr.from_local == tr.from_utc
    assert tr.time_bucket == "day"


def test_explicit_range_without_bucket_uses_finest_legal_bucket() -> None:
    tr = resolve_time_range(from_="2024-01-01", to="2024-01-03")

    assert tr.time_bucket == "hour"


def test_same_day_covers_whole_local_day() -> None:
    tr = resolve_time_range(from_="2024-03-10", to="2024-03-10", timezone="Asia/Tokyo")

    assert tr.from_local == "2024-03-10 00:00:00"
    assert tr.to_local == "2024-03-10 23:59:59"
    assert tr.from_utc == "2024-03-09 15:00:00"
    assert tr.to_utc == "2024-03-10 14:59:59"
    assert tr.time_bucket == "minute"


def test_resolution_is_deterministic() -> None:
    first = resolve_time_range(period="7d", time_bucket="day", timezone="Europe/Berlin", now=NOW)
    second = resolve_time_range(period="7d", time_bucket="day", timezone="Europe/Berlin", now=NOW)

    assert first == second


def test_today_in_gmt_starts_at_utc_midnight() -> None:
    tr = resolve_time_range(period="today", timezone="Etc/GMT", now=NOW)

    assert tr.from_utc == "2024-05-10 00:00:00"
    assert tr.to_utc == "2024-05-10 13:45:12"
    assert tr.time_bucket == "hour"


def test_today_in_local_timezone_converts_boundaries() -> None:
    tr = resolve_time_range(period="today", timezone="America/New_York", now=NOW)

    assert tr.from_local == "2024-05-10 00:00:00"
    assert tr.to_local == "2024-05-10 09:45:12"
    assert tr.from_utc == "2024-05-10 04:00:00"
    assert tr.to_utc == "2024-05-10 13:45:12"


def test_yesterday_covers_previous_day() -> None:
    tr = resolve_time_range(period="yesterday", now=NOW)

    assert tr.from_utc == "2024-05-09 00:00:00"
    assert tr.to_utc == "2024-05-09 23:59:59"


def test_seven_days_includes_today() -> None:
    tr = resolve_time_range(period="7d", time_bucket="hour", now=NOW)

    assert tr.from_utc == "2024-05-04 13:00:00"
    assert tr.to_utc == "2024-05-10 13:45:12"


def test_period_rejects_too_fine_bucket() -> None:
    with pytest.raises(BucketNotAllowed):
        resolve_time_range(period="7d", time_bucket="minute", now=NOW)


def test_all_without_history_starts_yesterday() -> None:
    tr = resolve_time_range(period="all", now=NOW)

    assert tr.from_utc == "2024-05-09 00:00:00"
    assert tr.time_bucket == "hour"


def test_unknown_period_is_invalid() -> None:
    with pytest.raises(InvalidDate):
        resolve_time_range(period="fortnight", time_bucket="day", now=NOW)


@pytest.mark.parametrize(
    ("from_", "to"),
    [
        ("2024-02-30", "2024-03-01"),
        ("2024-03-02", "2024-03-01"),
        ("03/01/2024", "2024-03-02"),
        ("abc", "2024-03-01"),
        ("2024-03-01", "03/05/2024x"),
    ],
)
@pytest.mark.parametrize("time_bucket", ["day", None])
def test_invalid_explicit_ranges(from_: str, to: str, time_bucket) -> None:
    with pytest.raises(InvalidDate):
        resolve_time_range(from_=from_, to=to, time_bucket=time_bucket)


def test_unknown_bucket_is_rejected_on_every_path() -> None:
    with pytest.raises(BucketNotAllowed):
        resolve_time_range(period="7d", time_bucket="week", now=NOW)

    with pytest.raises(BucketNotAllowed):
        resolve_time_range(period="7d", time_bucket="week", now=NOW, check_time_bucket=False)

    with pytest.raises(BucketNotAllowed):
        resolve_time_range(from_="2024-01-01", to="2024-01-03", time_bucket="week", check_time_bucket=False)


def test_missing_timeframe() -> None:
    with pytest.raises(MissingTimeframe):
        resolve_time_range()


def test_previous_window_has_equal_length() -> None:
    tr = resolve_time_range(from_="2024-01-03", to="2024-01-04", time_bucket="day")

    assert previous_window(tr) == ("2024-01-01 00:00:01", "2024-01-03 00:00:00")

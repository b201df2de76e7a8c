"""Helpers for resolving request time frames and time buckets."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple

import pandas as pd

from .errors import BucketNotAllowed, InvalidDate, MissingTimeframe, RangeTooLarge
from .types import TIME_BUCKETS, TimeBucket, TimeRange

DEFAULT_TIMEZONE = "Etc/GMT"
# Timezones treated as UTC when anchoring "now" and building chart axes.
GMT0_TIMEZONES = ("Atlantic/Azores", "Etc/GMT")

DATE_FORMAT = "%Y-%m-%d"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")
_PERIOD_PATTERN = re.compile(r"(\d+)([hdwMy])")


@dataclass(frozen=True)
class _BucketStep:
    max_days: int
    buckets: Tuple[TimeBucket, ...]


# Legal buckets for a range of ``d`` days: the first step with ``d <= max_days`` wins.
_BUCKET_STAIRCASE = (
    _BucketStep(0, ("minute", "hour")),
    _BucketStep(7, ("hour", "day", "month")),
    _BucketStep(28, ("day", "month")),
    _BucketStep(366, ("month",)),
    _BucketStep(732, ("month",)),
    _BucketStep(1464, ("month", "year")),
    _BucketStep(99999, ("year",)),
)

_PERIOD_BUCKETS = {
    "1h": "minute",
    "today": "hour",
    "yesterday": "hour",
    "1d": "hour",
    "7d": "hour",
    "4w": "day",
    "3M": "month",
    "12M": "month",
    "24M": "month",
}


def safe_timezone(timezone: Optional[str], default: str = DEFAULT_TIMEZONE) -> str:
    """Return ``timezone`` when it is a known IANA name, otherwise ``default``."""

    if not timezone:
        return default
    try:
        pd.Timestamp("2000-01-01").tz_localize(timezone)
    except (KeyError, ValueError):
        return default
    return timezone


def is_valid_date(value: Optional[str]) -> bool:
    """Return ``True`` for strings that are exactly a real ``YYYY-MM-DD`` date."""

    if not value or _DATE_PATTERN.fullmatch(value) is None:
        return False
    try:
        parsed = pd.Timestamp(value)
    except ValueError:
        return False
    return parsed.strftime(DATE_FORMAT) == value


def is_gmt0(timezone: str) -> bool:
    return timezone in GMT0_TIMEZONES


def day_difference(start: str | pd.Timestamp, end: str | pd.Timestamp) -> int:
    """Return the number of whole days between ``start`` and ``end``."""

    return (pd.Timestamp(end) - pd.Timestamp(start)).days


def allowed_time_buckets(diff_days: int) -> Tuple[TimeBucket, ...]:
    for step in _BUCKET_STAIRCASE:
        if diff_days <= step.max_days:
            return step.buckets
    raise RangeTooLarge()


def check_time_bucket_allowed(time_bucket: TimeBucket, start: str, end: str) -> None:
    """Raise unless ``time_bucket`` may be used for the range ``start``..``end``."""

    if time_bucket not in TIME_BUCKETS:
        raise BucketNotAllowed(time_bucket)
    if time_bucket not in allowed_time_buckets(day_difference(start, end)):
        raise BucketNotAllowed(time_bucket)


def lowest_possible_time_bucket(
    period: Optional[str] = None,
    from_: Optional[str] = None,
    to: Optional[str] = None,
) -> TimeBucket:
    """Return the finest bucket usable for ``period`` or the explicit range."""

    if from_ and to:
        return allowed_time_buckets(day_difference(from_, to))[0]
    return _PERIOD_BUCKETS.get(period or "", "year")


def bucket_offset(time_bucket: TimeBucket):
    """Return the pandas offset that advances a timestamp by one bucket."""

    if time_bucket == "minute":
        return pd.Timedelta(minutes=1)
    if time_bucket == "hour":
        return pd.Timedelta(hours=1)
    if time_bucket == "day":
        return pd.DateOffset(days=1)
    if time_bucket == "month":
        return pd.DateOffset(months=1)
    if time_bucket == "year":
        return pd.DateOffset(years=1)
    raise ValueError(f"Unknown time bucket: {time_bucket}")


def start_of(ts: pd.Timestamp, time_bucket: Optional[TimeBucket]) -> pd.Timestamp:
    if time_bucket is None:
        return ts
    if time_bucket == "minute":
        return ts.replace(second=0, microsecond=0, nanosecond=0)
    if time_bucket == "hour":
        return ts.replace(minute=0, second=0, microsecond=0, nanosecond=0)
    day = ts.replace(hour=0, minute=0, second=0, microsecond=0, nanosecond=0)
    if time_bucket == "day":
        return day
    if time_bucket == "month":
        return day.replace(day=1)
    if time_bucket == "year":
        return day.replace(month=1, day=1)
    raise ValueError(f"Unknown time bucket: {time_bucket}")


def end_of(ts: pd.Timestamp, time_bucket: Optional[TimeBucket]) -> pd.Timestamp:
    if time_bucket is None:
        return ts
    return start_of(ts, time_bucket) + bucket_offset(time_bucket) - pd.Timedelta(microseconds=1)


def format_timestamp(ts: pd.Timestamp) -> str:
    return ts.strftime(DATETIME_FORMAT)


def _now(timezone: str, now: Optional[pd.Timestamp]) -> pd.Timestamp:
    current = pd.Timestamp.now(tz="UTC") if now is None else pd.Timestamp(now)
    if current.tzinfo is None:
        current = current.tz_localize("UTC")
    if is_gmt0(timezone):
        return current.tz_convert("UTC")
    return current.tz_convert(timezone)


def _period_offset(amount: int, unit: str):
    if unit == "h":
        return pd.Timedelta(hours=amount)
    if unit == "d":
        return pd.DateOffset(days=amount)
    if unit == "w":
        return pd.DateOffset(weeks=amount)
    if unit == "M":
        return pd.DateOffset(months=amount)
    return pd.DateOffset(years=amount)


def _local_day(day: str, timezone: str) -> Tuple[pd.Timestamp, pd.Timestamp]:
    """Return timezone aware timestamps covering the whole local ``day``."""

    start_ts = pd.Timestamp(day).tz_localize(timezone)
    end_ts = start_ts.replace(hour=23, minute=59, second=59, microsecond=999_999)
    return start_ts, end_ts


def _resolve_period(
    period: str,
    time_bucket: Optional[TimeBucket],
    now: pd.Timestamp,
    diff: Optional[int],
) -> Tuple[pd.Timestamp, pd.Timestamp]:
    if period == "today":
        return start_of(now, "day"), now

    if period == "yesterday":
        yesterday = now - pd.DateOffset(days=1)
        return start_of(yesterday, "day"), end_of(yesterday, "day")

    if period == "all":
        if not diff or diff == 1:
            return start_of(now - pd.DateOffset(days=1), "day"), now
        return start_of(now - pd.DateOffset(days=diff - 1), time_bucket), now

    match = _PERIOD_PATTERN.fullmatch(period)
    if match is None:
        raise InvalidDate(f"The provided period ({period}) is not supported")

    amount = int(match.group(1))
    if period not in {"1d", "1h"}:
        amount -= 1
    start = now - _period_offset(amount, match.group(2))
    return start_of(start, time_bucket), now


def resolve_time_range(
    from_: Optional[str] = None,
    to: Optional[str] = None,
    time_bucket: Optional[TimeBucket] = None,
    period: Optional[str] = None,
    timezone: str = DEFAULT_TIMEZONE,
    diff: Optional[int] = None,
    now: Optional[pd.Timestamp] = None,
    check_time_bucket: bool = True,
) -> TimeRange:
    """Resolve a request time frame into local and UTC boundaries.

    An explicit ``from_``/``to`` pair wins over ``period``. The pair is taken
    as UTC dates unless both are the same day, in which case the whole local
    day in ``timezone`` is used. Periods are anchored to ``now`` (UTC for the
    zero offset timezones, local time otherwise) and ``diff`` carries the
    precomputed day span used by ``period="all"``.

    When ``time_bucket`` is not given, the finest bucket legal for the
    request is used, so the returned range always carries its bucket.
    """

    if time_bucket is not None and time_bucket not in TIME_BUCKETS:
        raise BucketNotAllowed(time_bucket)

    if from_ and to:
        if not is_valid_date(from_):
            raise InvalidDate("The timeframe 'from' parameter is invalid")
        if not is_valid_date(to):
            raise InvalidDate("The timeframe 'to' parameter is invalid")
        if pd.Timestamp(from_) > pd.Timestamp(to):
            raise InvalidDate("The timeframe 'from' parameter cannot be greater than 'to'")
        if time_bucket is None:
            time_bucket = lowest_possible_time_bucket(None, from_, to)
        if check_time_bucket:
            check_time_bucket_allowed(time_bucket, from_, to)

        if from_ == to:
            group_from, group_to = _local_day(from_, "UTC" if is_gmt0(timezone) else timezone)
            from_utc = group_from.tz_convert("UTC")
            to_utc = group_to.tz_convert("UTC")
        else:
            group_from = start_of(pd.Timestamp(from_).tz_localize("UTC"), time_bucket)
            group_to = end_of(pd.Timestamp(to).tz_localize("UTC"), time_bucket)
            from_utc, to_utc = group_from, group_to
    elif period:
        current = _now(timezone, now)
        if time_bucket is None:
            time_bucket = _PERIOD_BUCKETS.get(period)
        if time_bucket is None:
            raw_from, raw_to = _resolve_period(period, None, current, diff)
            time_bucket = allowed_time_buckets(day_difference(raw_from, raw_to))[0]
        group_from, group_to = _resolve_period(period, time_bucket, current, diff)

        if check_time_bucket:
            check_time_bucket_allowed(
                time_bucket, format_timestamp(group_from), format_timestamp(group_to)
            )

        from_utc = start_of(group_from.tz_convert("UTC"), time_bucket)
        to_utc = group_to.tz_convert("UTC")
    else:
        raise MissingTimeframe()

    return TimeRange(
        from_local=format_timestamp(group_from),
        to_local=format_timestamp(group_to),
        from_utc=format_timestamp(from_utc),
        to_utc=format_timestamp(to_utc),
        time_bucket=time_bucket,
        timezone=timezone,
    )


def previous_window(time_range: TimeRange) -> Tuple[str, str]:
    """Return the UTC window of equal length that ends where ``time_range`` starts."""

    start = pd.Timestamp(time_range.from_utc)
    end = pd.Timestamp(time_range.to_utc)
    return format_timestamp(start - (end - start)), time_range.from_utc


__all__ = [
    "DATE_FORMAT",
    "DATETIME_FORMAT",
    "DEFAULT_TIMEZONE",
    "GMT0_TIMEZONES",
    "allowed_time_buckets",
    "bucket_offset",
    "check_time_bucket_allowed",
    "day_difference",
    "end_of",
    "format_timestamp",
    "is_gmt0",
    "is_valid_date",
    "lowest_possible_time_bucket",
    "previous_window",
    "resolve_time_range",
    "safe_timezone",
    "start_of",
]

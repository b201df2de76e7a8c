"""Support for turning a time bucket into ``GROUP BY`` SQL snippets."""

from __future__ import annotations

from typing import List, Tuple

from .types import TimeBucket

# Bucketing happens on the event time shifted into the request timezone.
LOCAL_TIME_COLUMN = "tz_created"

_BUCKET_PARTS = {
    "year": ("year",),
    "month": ("year", "month"),
    "day": ("year", "month", "day"),
    "hour": ("year", "month", "day", "hour"),
    "minute": ("year", "month", "day", "hour", "minute"),
}


def bucket_parts(time_bucket: TimeBucket) -> Tuple[str, ...]:
    parts = _BUCKET_PARTS.get(time_bucket)
    if parts is None:
        raise ValueError("time_bucket must be one of: 'minute', 'hour', 'day', 'month', 'year'")
    return parts


def local_time_column(column: str = "created") -> str:
    return f"DATETIME({column}, @timezone) AS {LOCAL_TIME_COLUMN}"


def _parse_time_bucket(time_bucket: TimeBucket) -> Tuple[str, str]:
    """Return the ``SELECT`` list and ``GROUP BY`` list for ``time_bucket``."""

    statements: List[str] = []
    aliases: List[str] = []

    for part in bucket_parts(time_bucket):
        statements.append(f"EXTRACT({part.upper()} FROM {LOCAL_TIME_COLUMN}) AS {part}")
        aliases.append(part)

    return ", ".join(statements), ", ".join(aliases)


__all__ = ["LOCAL_TIME_COLUMN", "bucket_parts", "local_time_column"]

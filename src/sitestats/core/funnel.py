"""Funnel query construction and the arithmetic turning levels into steps."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Iterable, List, Union

import pandas as pd

from .aggregation import Tables
from .errors import InvalidFunnelSteps
from .query_helpers import time_window_condition
from .types import FunnelLevel, FunnelStep


def parse_funnel_steps(
    raw: Union[str, Sequence[str], None],
    min_steps: int = 2,
    max_steps: int = 10,
) -> List[str]:
    """Validate the requested funnel steps (pages or custom event names)."""

    steps = raw
    if isinstance(raw, str):
        try:
            steps = json.loads(raw)
        except ValueError as exc:
            raise InvalidFunnelSteps("An array of pages has to be provided as a pages param") from exc

    if not isinstance(steps, (list, tuple)):
        raise InvalidFunnelSteps("An array of pages has to be provided as a pages param")

    if len(steps) < min_steps:
        raise InvalidFunnelSteps(f"A minimum of {min_steps} pages or events has to be provided")

    if len(steps) > max_steps:
        raise InvalidFunnelSteps(f"A maximum of {max_steps} pages or events can be provided")

    if not all(isinstance(step, str) for step in steps):
        raise InvalidFunnelSteps("Pages and events must be strings")

    return list(steps)


def funnel_query(tables: Tables, step_count: int) -> str:
    """Return the SQL counting sessions per deepest funnel level reached.

    Step ``i`` matches events whose page or event name equals ``@v<i-1>``.
    Every step has to happen after the previous one and within ``@window``
    seconds of the first step.  Sessions that never match step 1 are absent.
    """

    if step_count < 1:
        raise ValueError("step_count must be at least 1")

    window = time_window_condition()
    ctes = [
        "\n".join(
            [
                "events AS (",
                "  SELECT psid, pg AS value, created",
                f"  FROM {tables.analytics}",
                f"  WHERE pid = @pid AND psid IS NOT NULL AND {window}",
                "  UNION ALL",
                "  SELECT psid, ev AS value, created",
                f"  FROM {tables.custom_events}",
                f"  WHERE pid = @pid AND psid IS NOT NULL AND {window}",
                ")",
            ]
        )
    ]
    for idx in range(1, step_count + 1):
        ctes.append(f"step{idx} AS (SELECT psid, created FROM events WHERE value = @v{idx - 1})")

    joins = []
    for idx in range(2, step_count + 1):
        joins.append(
            "\n".join(
                [
                    f"  LEFT JOIN step{idx}",
                    f"         ON step{idx}.psid = step{idx - 1}.psid",
                    f"        AND step{idx}.created > step{idx - 1}.created",
                    f"        AND TIMESTAMP_DIFF(step{idx}.created, step1.created, SECOND) <= @window",
                ]
            )
        )

    cases = [f"WHEN step{idx}.psid IS NOT NULL THEN {idx}" for idx in range(step_count, 1, -1)]
    level = f"CASE {' '.join(cases)} ELSE 1 END" if cases else "1"

    ctes.append(
        "\n".join(
            [
                "levels AS (",
                f"  SELECT step1.psid, MAX({level}) AS level",
                "  FROM step1",
                *joins,
                "  GROUP BY step1.psid",
                ")",
            ]
        )
    )

    return "\n".join(
        [
            "WITH",
            ",\n".join(ctes),
            "SELECT level, COUNT(*) AS c",
            "FROM levels",
            "GROUP BY level",
            "ORDER BY level DESC",
        ]
    )


def _level_counts(levels: Union[pd.DataFrame, Iterable[FunnelLevel]]) -> dict:
    if isinstance(levels, pd.DataFrame):
        return {int(row["level"]): int(row["c"]) for row in levels.to_dict(orient="records")}
    return {level.level: level.count for level in levels}


def backfill(levels: Union[pd.DataFrame, Iterable[FunnelLevel]], total_steps: int) -> List[FunnelLevel]:
    """Return a count for every level ``1..total_steps``.

    The store only reports the deepest level each session reached and omits
    empty levels.  A session at level ``n`` also passed every level below it,
    so counts accumulate from the top level down.
    """

    counts = _level_counts(levels)
    running = 0
    filled: List[FunnelLevel] = []
    for level in range(total_steps, 0, -1):
        running += counts.get(level, 0)
        filled.append(FunnelLevel(level=level, count=running))
    filled.reverse()
    return filled


def _percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0
    return round(part / whole * 100, 2)


def format_funnel(levels: Sequence[FunnelLevel], steps: Sequence[str]) -> List[FunnelStep]:
    funnel: List[FunnelStep] = []
    for index, (level, value) in enumerate(zip(levels, steps)):
        if index == 0:
            funnel.append(FunnelStep(value, level.count, 100, 100, 0, 0))
            continue

        previous = levels[index - 1].count
        dropoff = previous - level.count
        funnel.append(
            FunnelStep(
                value=value,
                events=level.count,
                events_perc=_percentage(level.count, levels[0].count),
                events_perc_step=_percentage(level.count, previous),
                dropoff=dropoff,
                dropoff_perc_step=_percentage(dropoff, previous),
            )
        )
    return funnel


def empty_funnel(steps: Sequence[str]) -> List[FunnelStep]:
    return [FunnelStep(value, 0, 0, 0, 0, 0) for value in steps]


__all__ = ["backfill", "empty_funnel", "format_funnel", "funnel_query", "parse_funnel_steps"]

from __future__ import annotations

import json

import pandas as pd
import pytest

from sitestats.core.dates import resolve_time_range
from sitestats.core.errors import InvalidFunnelSteps, NotFoundError
from sitestats.core.funnel import backfill, empty_funnel, format_funnel, parse_funnel_steps
from sitestats.core.types import FunnelLevel, FunnelStep

DAYS = resolve_time_range(from_="2024-01-01", to="2024-01-03", time_bucket="day")


class _Projects:
    def __init__(self, funnels: dict) -> None:
        self.funnels = funnels

    def get_funnel_steps(self, pid: str, funnel_id: str):
        return self.funnels.get((pid, funnel_id))


def test_backfill_from_top_level() -> None:
    assert backfill([FunnelLevel(3, 50)], 3) == [FunnelLevel(1, 50), FunnelLevel(2, 50), FunnelLevel(3, 50)]


def test_backfill_accumulates_deepest_levels() -> None:
    df = pd.DataFrame({"level": [3, 1], "c": [50, 100]})

    assert [level.count for level in backfill(df, 3)] == [150, 50, 50]


def test_format_funnel_percentages() -> None:
    steps = format_funnel([FunnelLevel(1, 100), FunnelLevel(2, 50), FunnelLevel(3, 25)], ["A", "B", "C"])

    assert steps[0] == FunnelStep("A", 100, 100, 100, 0, 0)
    assert steps[1] == FunnelStep("B", 50, 50, 50, 50, 50)
    assert steps[2] == FunnelStep("C", 25, 25, 50, 25, 50)


def test_format_funnel_rounds_to_two_decimals() -> None:
    steps = format_funnel([FunnelLevel(1, 3), FunnelLevel(2, 1)], ["A", "B"])

    assert steps[1].events_perc == 33.33
    assert steps[1].dropoff_perc_step == 66.67


def test_empty_funnel() -> None:
    assert empty_funnel(["A", "B"]) == [FunnelStep("A", 0, 0, 0, 0, 0), FunnelStep("B", 0, 0, 0, 0, 0)]


@pytest.mark.parametrize(
    "raw",
    [None, "not json", '"/"', json.dumps(["/"]), json.dumps([str(i) for i in range(11)]), json.dumps(["/", 1])],
)
def test_parse_funnel_steps_rejects_invalid_input(raw) -> None:
    with pytest.raises(InvalidFunnelSteps):
        parse_funnel_steps(raw)


def test_parse_funnel_steps_accepts_lists() -> None:
    assert parse_funnel_steps('["/", "signup"]') == ["/", "signup"]
    assert parse_funnel_steps(("/", "/pricing", "purchase")) == ["/", "/pricing", "purchase"]


def test_compute_funnel_formats_store_levels(make_stats) -> None:
    stats = make_stats(lambda sql: pd.DataFrame({"level": [2, 1], "c": [40, 60]}))

    funnel = stats.compute_funnel("site-1", DAYS, steps='["/", "/pricing"]')

    assert [step.events for step in funnel] == [100, 40]
    assert funnel[1].dropoff == 60


def test_compute_funnel_without_sessions_is_all_zeros(make_stats) -> None:
    stats = make_stats()

    funnel = stats.compute_funnel("site-1", DAYS, steps='["/", "/pricing"]')

    assert funnel == empty_funnel(["/", "/pricing"])


def test_compute_funnel_from_stored_funnel(make_stats) -> None:
    stats = make_stats(
        lambda sql: pd.DataFrame({"level": [3], "c": [7]}),
        projects=_Projects({("site-1", "f1"): ["/", "signup", "purchase"]}),
    )

    funnel = stats.compute_funnel("site-1", DAYS, funnel_id="f1")

    assert [step.value for step in funnel] == ["/", "signup", "purchase"]
    assert [step.events for step in funnel] == [7, 7, 7]


def test_unknown_funnel_id(make_stats) -> None:
    stats = make_stats(projects=_Projects({}))

    with pytest.raises(NotFoundError, match="funnelId"):
        stats.compute_funnel("site-1", DAYS, funnel_id="missing")

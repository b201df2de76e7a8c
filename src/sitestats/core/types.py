"""Public data structures used by the query engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Tuple, TypedDict, Union

__all__ = [
    "ChartRenderMode",
    "CHART_RENDER_MODES",
    "Chart",
    "CompiledFilter",
    "DataType",
    "DATA_TYPES",
    "DimensionCount",
    "FilterClause",
    "FlowEdge",
    "FlowGraph",
    "FunnelLevel",
    "FunnelStep",
    "ParamValue",
    "PerfMeasure",
    "PERF_MEASURES",
    "PerformanceComparison",
    "PerformanceMetrics",
    "PeriodComparison",
    "PeriodMetrics",
    "RawFilter",
    "TimeBucket",
    "TIME_BUCKETS",
    "TimeRange",
    "UserFlow",
    "XAxis",
]

TimeBucket = Literal["minute", "hour", "day", "month", "year"]
TIME_BUCKETS: Tuple[TimeBucket, ...] = ("minute", "hour", "day", "month", "year")

DataType = Literal["analytics", "performance", "errors"]
DATA_TYPES: Tuple[DataType, ...] = ("analytics", "performance", "errors")

ChartRenderMode = Literal["periodical", "cumulative"]
CHART_RENDER_MODES: Tuple[ChartRenderMode, ...] = ("periodical", "cumulative")

PerfMeasure = Literal["average", "median", "p75", "p95", "quantiles"]
PERF_MEASURES: Tuple[PerfMeasure, ...] = ("average", "median", "p75", "p95", "quantiles")

ParamValue = Union[str, int, float, bool, None, List[str]]


class RawFilter(TypedDict, total=False):
    """A single filter entry as it arrives in the request JSON."""

    column: str
    filter: Union[str, None, List[Optional[str]]]
    isExclusive: bool
    isContains: bool


@dataclass(frozen=True)
class TimeRange:
    """Resolved request window.

    ``from_local``/``to_local`` are rendered in the request timezone and drive
    the chart axis; ``from_utc``/``to_utc`` bound the store queries.
    """

    from_local: str
    to_local: str
    from_utc: str
    to_utc: str
    time_bucket: Optional[TimeBucket] = None
    timezone: str = "Etc/GMT"


@dataclass(frozen=True)
class FilterClause:
    column: str
    value: Optional[str]
    is_exclusive: bool = False
    is_contains: bool = False

    def to_dict(self) -> RawFilter:
        return {
            "column": self.column,
            "filter": self.value,
            "isExclusive": self.is_exclusive,
            "isContains": self.is_contains,
        }


@dataclass(frozen=True)
class CompiledFilter:
    """Predicate and bound parameters compiled once per request."""

    predicate_text: str = ""
    parameters: Dict[str, ParamValue] = field(default_factory=dict)
    normalized_clauses: Tuple[FilterClause, ...] = ()
    custom_event_filter_applied: bool = False
    page_inclusive: bool = False

    @property
    def sql_suffix(self) -> str:
        """Return the predicate ready to be appended to an existing ``WHERE``."""

        if not self.predicate_text:
            return ""
        return f" AND {self.predicate_text}"


@dataclass(frozen=True)
class XAxis:
    """Dense bucket labels, once in UTC and once shifted into the request timezone."""

    utc: List[str]
    shifted: List[str]

    def __len__(self) -> int:
        return len(self.utc)


@dataclass
class Chart:
    x: List[str]
    series: Dict[str, list] = field(default_factory=dict)


@dataclass(frozen=True)
class DimensionCount:
    name: Optional[str]
    count: Union[int, float]
    extras: Dict[str, Optional[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class FunnelLevel:
    level: int
    count: int


@dataclass(frozen=True)
class FunnelStep:
    """One rendered step of a funnel."""

    value: str
    events: int
    events_perc: float
    events_perc_step: float
    dropoff: int
    dropoff_perc_step: float


@dataclass(frozen=True)
class FlowEdge:
    source: str
    target: str
    value: int


@dataclass
class FlowGraph:
    nodes: List[str] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)


@dataclass
class UserFlow:
    ascending: FlowGraph = field(default_factory=FlowGraph)
    descending: FlowGraph = field(default_factory=FlowGraph)


@dataclass(frozen=True)
class PeriodMetrics:
    total: int = 0
    unique: int = 0
    users: int = 0
    sdur: float = 0
    bounce_rate: float = 0


@dataclass(frozen=True)
class PeriodComparison:
    current: PeriodMetrics
    previous: PeriodMetrics
    change: float
    unique_change: float
    users_change: float
    bounce_rate_change: float
    sdur_change: float
    custom_event_filter_applied: bool = False


@dataclass(frozen=True)
class PerformanceMetrics:
    frontend: float = 0
    network: float = 0
    backend: float = 0


@dataclass(frozen=True)
class PerformanceComparison:
    current: PerformanceMetrics
    previous: PerformanceMetrics
    frontend_change: float
    network_change: float
    backend_change: float

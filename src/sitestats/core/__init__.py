from .client import ProjectsProvider, SiteStats
from .errors import (
    AnalyticsError,
    BucketNotAllowed,
    InvalidDate,
    InvalidFilterShape,
    InvalidFunnelSteps,
    InvalidMeasure,
    MissingTimeframe,
    NoDataError,
    NotFoundError,
    RangeTooLarge,
    UnsupportedFilter,
    UpstreamQueryError,
    ValidationError,
)
from .types import (
    Chart,
    CompiledFilter,
    DimensionCount,
    FilterClause,
    FlowEdge,
    FlowGraph,
    FunnelStep,
    PerformanceComparison,
    PeriodComparison,
    TimeRange,
    UserFlow,
    XAxis,
)

__all__ = [
    "AnalyticsError",
    "BucketNotAllowed",
    "Chart",
    "CompiledFilter",
    "DimensionCount",
    "FilterClause",
    "FlowEdge",
    "FlowGraph",
    "FunnelStep",
    "InvalidDate",
    "InvalidFilterShape",
    "InvalidFunnelSteps",
    "InvalidMeasure",
    "MissingTimeframe",
    "NoDataError",
    "NotFoundError",
    "PerformanceComparison",
    "PeriodComparison",
    "ProjectsProvider",
    "RangeTooLarge",
    "SiteStats",
    "TimeRange",
    "UnsupportedFilter",
    "UpstreamQueryError",
    "UserFlow",
    "ValidationError",
    "XAxis",
]

"""Public package API."""

from importlib import metadata

from .config import Settings
from .core import (
    AnalyticsError,
    CompiledFilter,
    FunnelStep,
    NotFoundError,
    SiteStats,
    TimeRange,
    UpstreamQueryError,
    ValidationError,
)

__all__ = [
    "AnalyticsError",
    "CompiledFilter",
    "FunnelStep",
    "NotFoundError",
    "Settings",
    "SiteStats",
    "TimeRange",
    "UpstreamQueryError",
    "ValidationError",
]

try:
    __version__ = metadata.version("sitestats-bigquery")
except (
    metadata.PackageNotFoundError
):  # pragma: no cover - fallback for editable installs
    __version__ = "0.0.0"

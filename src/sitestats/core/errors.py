"""Exception hierarchy raised by the query engine."""

from __future__ import annotations

__all__ = [
    "AnalyticsError",
    "BucketNotAllowed",
    "InvalidDate",
    "InvalidFilterShape",
    "InvalidFunnelSteps",
    "InvalidMeasure",
    "MissingTimeframe",
    "NoDataError",
    "NotFoundError",
    "RangeTooLarge",
    "UnsupportedFilter",
    "UpstreamQueryError",
    "ValidationError",
]


class AnalyticsError(Exception):
    """Base class for every error raised by :mod:`sitestats`."""


class ValidationError(AnalyticsError, ValueError):
    """Malformed or contradictory request input. Never retried."""


class MissingTimeframe(ValidationError):
    def __init__(self) -> None:
        super().__init__("The timeframe (either from/to pair or period) has to be provided")


class InvalidDate(ValidationError):
    pass


class RangeTooLarge(ValidationError):
    def __init__(self) -> None:
        super().__init__("The difference between 'from' and 'to' is greater than allowed")


class BucketNotAllowed(ValidationError):
    def __init__(self, time_bucket: str) -> None:
        super().__init__(
            f"The specified 'timeBucket' parameter ({time_bucket}) cannot be applied to the date range"
        )
        self.time_bucket = time_bucket


class InvalidFilterShape(ValidationError):
    def __init__(self) -> None:
        super().__init__("The provided filters are not in a valid format")


class UnsupportedFilter(ValidationError):
    def __init__(self, column: str, data_type: str) -> None:
        super().__init__(f"Filtering by '{column}' is not supported for {data_type} data")
        self.column = column
        self.data_type = data_type


class InvalidFunnelSteps(ValidationError):
    pass


class InvalidMeasure(ValidationError):
    def __init__(self, measure: str) -> None:
        super().__init__(f"The provided measure ({measure}) is not supported")
        self.measure = measure


class NoDataError(ValidationError):
    pass


class NotFoundError(AnalyticsError, LookupError):
    """A referenced funnel, project or error id does not exist."""


class UpstreamQueryError(AnalyticsError):
    """The column store or the cache failed or returned malformed data."""

    def __init__(self, message: str = "Can't process the request. Please, try again later.") -> None:
        super().__init__(message)

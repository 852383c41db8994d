"""Error taxonomy for the analytics pipeline."""
from datetime import date
from typing import Optional, Union


class AnalyticsError(Exception):
    """Base class for analytics failures."""


class ValidationError(AnalyticsError):
    """Malformed input; surfaced as a client error and never retried."""


class PersistenceError(AnalyticsError):
    """A read or write against the analytics stores failed."""


class AggregationError(AnalyticsError):
    """The daily aggregation for ``date`` failed; nothing was written."""

    def __init__(self, date: Union[date, str], message: Optional[str] = None):
        self.date = str(date)
        super().__init__(message or f"Daily aggregation failed for {self.date}")

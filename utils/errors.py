"""Error taxonomy for the temperature cache and its upstream collaborators."""
from datetime import date
from typing import Optional


class TemperatureDataError(Exception):
    """Base class for all temperature data errors."""


class InvalidRange(TemperatureDataError, ValueError):
    """End date precedes start date."""

    def __init__(self, start: date, end: date):
        self.start = start
        self.end = end
        super().__init__(f"end date {end.isoformat()} precedes start date {start.isoformat()}")


class UpstreamFailure(TemperatureDataError):
    """The history provider failed for a reason other than throttling."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class UpstreamRateLimited(UpstreamFailure):
    """The history provider throttled the request."""


class LocationNotFound(TemperatureDataError, LookupError):
    """The geocoder could not resolve a location name."""

    def __init__(self, location: str):
        self.location = location
        super().__init__(f"Location not found: {location}")


class CacheWriteFailure(TemperatureDataError):
    """Persisting fetched records failed and the transaction was rolled back."""


class StoreReadFailure(TemperatureDataError):
    """Reading from the durable store failed."""
